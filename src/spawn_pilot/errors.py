"""Exceptions raised by spawn-pilot, and the helper that builds them."""

from __future__ import annotations

from typing import Any, Optional


class ConfigError(ValueError):
    """Raised when spawn options are invalid or misplaced in a pipeline."""


class ProcessAborted(Exception):
    """Cause attached to a SubprocessError when a CancelToken fired."""

    def __init__(self, reason: Any = None):
        self.reason = reason
        super().__init__("The operation was aborted")
        if isinstance(reason, BaseException):
            self.__cause__ = reason


class SubprocessError(Exception):
    """
    Raised when a subprocess fails, for whatever reason.

    Exactly one of ``exit_code`` / ``signal_name`` is set when the process
    ran and then failed. Both are None when it never started, when a stdio
    stream broke, when it was aborted, or when its options were invalid; in
    those cases ``cause`` holds the original exception.

    ``stdout``, ``stderr`` and ``output`` hold whatever was captured before
    the failure (empty strings if the process never ran).
    """

    def __init__(
        self,
        message: str,
        *,
        command: str,
        stdout: str = "",
        stderr: str = "",
        output: str = "",
        duration_ms: float = 0.0,
        exit_code: Optional[int] = None,
        signal_name: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.command = command
        self.stdout = stdout
        self.stderr = stderr
        self.output = output
        self.duration_ms = duration_ms
        self.exit_code = exit_code
        self.signal_name = signal_name
        self.piped_from = None
        self.__cause__ = cause

    @property
    def cause(self) -> Optional[BaseException]:
        return self.__cause__

    def __repr__(self) -> str:
        return f"SubprocessError({self.message!r})"


def subprocess_error(
    command: str,
    *,
    stdout: str = "",
    stderr: str = "",
    output: str = "",
    duration_ms: float = 0.0,
    exit_code: Optional[int] = None,
    signal_name: Optional[str] = None,
    cause: Optional[BaseException] = None,
) -> SubprocessError:
    """Build a SubprocessError with the message matching how it failed."""
    if signal_name is not None:
        message = f"Command was terminated with {signal_name}: {command}"
    elif exit_code is not None:
        message = f"Command failed with exit code {exit_code}: {command}"
    else:
        message = f"Command failed: {command}"

    return SubprocessError(
        message,
        command=command,
        stdout=stdout,
        stderr=stderr,
        output=output,
        duration_ms=duration_ms,
        exit_code=exit_code,
        signal_name=signal_name,
        cause=cause,
    )
