"""Options accepted by spawn() and Subprocess.pipe()."""

from __future__ import annotations

import codecs
import os
import signal as signal_module
from dataclasses import dataclass, fields
from typing import Any, Callable, Mapping, Optional, Union

from spawn_pilot.errors import ConfigError

# Values accepted for stdin/stdout/stderr besides file descriptors and file objects.
STDIO_NAMES = ("inherit", "ignore")


class CancelToken:
    """
    Lets a caller abort processes it started.

    Pass the token as ``signal=`` to spawn(); calling cancel() sends the
    kill signal to every running process holding the token.

        token = CancelToken()
        sub = spawn("sleep", ["100"], signal=token)
        token.cancel("user pressed stop")
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: Any = None
        self._callbacks: list[Callable[[Any], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Any:
        return self._reason

    def cancel(self, reason: Any = None) -> None:
        """Fire the token. Later calls do nothing."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(reason)

    def add_callback(self, callback: Callable[[Any], None]) -> None:
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[Any], None]) -> None:
        try:
            self._callbacks.remove(callback)
        except ValueError:
            pass

    def __repr__(self) -> str:
        return f"CancelToken(cancelled={self._cancelled})"


def _is_stdio(value: Any) -> bool:
    if value is None or value in STDIO_NAMES:
        return True
    if isinstance(value, bool):
        return False
    return isinstance(value, int) or hasattr(value, "fileno")


@dataclass(frozen=True)
class SpawnOptions:
    """Validated options for one process."""

    timeout: Optional[float] = None
    signal: Optional[CancelToken] = None
    kill_signal: int = signal_module.SIGTERM
    input: Union[str, bytes, None] = None
    stdin: Any = None
    stdout: Any = None
    stderr: Any = None
    cwd: Union[str, "os.PathLike[str]", None] = None
    env: Optional[Mapping[str, str]] = None
    argv0: Optional[str] = None
    detached: bool = False
    encoding: str = "utf-8"

    @classmethod
    def from_kwargs(cls, options: Mapping[str, Any]) -> "SpawnOptions":
        """Build options from spawn() keyword arguments, rejecting unknown names."""
        known = {field.name for field in fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise ConfigError(f"unknown option(s): {', '.join(unknown)}")
        return cls(**options)

    def __post_init__(self) -> None:
        if self.timeout is not None:
            if isinstance(self.timeout, bool) or not isinstance(self.timeout, (int, float)):
                raise ConfigError(f"options.timeout must be a number, got {self.timeout!r}")
            if self.timeout <= 0:
                raise ConfigError(f"options.timeout must be positive, got {self.timeout!r}")
        if self.signal is not None and not isinstance(self.signal, CancelToken):
            raise ConfigError(f"options.signal must be a CancelToken, got {self.signal!r}")
        if isinstance(self.kill_signal, bool) or not isinstance(self.kill_signal, int):
            raise ConfigError(f"options.kill_signal must be a signal number, got {self.kill_signal!r}")
        if self.input is not None and not isinstance(self.input, (str, bytes)):
            raise ConfigError(f"options.input must be str or bytes, got {self.input!r}")
        for name in ("stdin", "stdout", "stderr"):
            value = getattr(self, name)
            if not _is_stdio(value):
                raise ConfigError(
                    f"options.{name} must be 'inherit', 'ignore', a file descriptor "
                    f"or a file object, got {value!r}"
                )
        if self.input is not None and self.stdin is not None:
            raise ConfigError("options.input and options.stdin cannot both be set")
        if self.cwd is not None and not isinstance(self.cwd, (str, os.PathLike)):
            raise ConfigError(f"options.cwd must be a path, got {self.cwd!r}")
        if self.env is not None and not isinstance(self.env, Mapping):
            raise ConfigError(f"options.env must be a mapping, got {self.env!r}")
        if self.argv0 is not None and not isinstance(self.argv0, str):
            raise ConfigError(f"options.argv0 must be a string, got {self.argv0!r}")
        if not isinstance(self.detached, bool):
            raise ConfigError(f"options.detached must be a boolean, got {self.detached!r}")
        try:
            codecs.lookup(self.encoding)
        except (LookupError, TypeError):
            raise ConfigError(f"options.encoding is not a known codec: {self.encoding!r}") from None

    @property
    def input_bytes(self) -> Optional[bytes]:
        if isinstance(self.input, str):
            return self.input.encode(self.encoding)
        return self.input
