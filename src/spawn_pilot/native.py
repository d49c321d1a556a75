"""
Thin layer over asyncio's subprocess support.

asyncio.create_subprocess_exec() hides the subprocess transport, but tearing
down a single stdio pipe needs it, so launch() does the same work by hand
with loop.subprocess_exec() and keeps both halves.
"""

from __future__ import annotations

import asyncio
import logging
import os
import subprocess
import sys
from contextlib import suppress
from typing import Any, Optional, Sequence

from spawn_pilot.options import SpawnOptions

LOGGER = logging.getLogger(__name__)

# Same default as asyncio.create_subprocess_exec().
_STREAM_LIMIT = 2 ** 16

_FDS = {"stdin": 0, "stdout": 1, "stderr": 2}

PYTHON_EXECUTABLES = frozenset({"python", "python3"})


def _stdio(value: Any) -> Any:
    if value is None:
        return subprocess.PIPE
    if value == "inherit":
        return None
    if value == "ignore":
        return subprocess.DEVNULL
    return value


class ChildProcess:
    """
    A running child, as handed out by ``Subprocess.process``.

    Wraps asyncio.subprocess.Process. ``stdin`` is a StreamWriter,
    ``stdout`` and ``stderr`` are StreamReaders; each is None when the
    stream was redirected elsewhere.
    """

    def __init__(self, process: asyncio.subprocess.Process, transport: asyncio.SubprocessTransport):
        self._process = process
        self._transport = transport
        self.stream_error: asyncio.Future = asyncio.get_running_loop().create_future()

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    @property
    def stdin(self) -> Optional[asyncio.StreamWriter]:
        return self._process.stdin

    @property
    def stdout(self) -> Optional[asyncio.StreamReader]:
        return self._process.stdout

    @property
    def stderr(self) -> Optional[asyncio.StreamReader]:
        return self._process.stderr

    async def wait(self) -> int:
        return await self._process.wait()

    def send_signal(self, sig: int) -> None:
        # The child may already be gone.
        with suppress(ProcessLookupError):
            self._process.send_signal(sig)

    def terminate(self) -> None:
        with suppress(ProcessLookupError):
            self._process.terminate()

    def kill(self) -> None:
        with suppress(ProcessLookupError):
            self._process.kill()

    def destroy(self, name: str, exc: Optional[BaseException] = None) -> None:
        """
        Close one stdio pipe.

        Args:
            name: "stdin", "stdout" or "stderr".
            exc: If given, the stream is recorded as failed with this
                 exception. Only the first failure is kept in stream_error.
        """
        if name not in _FDS:
            raise ValueError(f"unknown stream: {name!r}")
        if exc is not None:
            LOGGER.debug("pid %s: %s failed: %r", self.pid, name, exc)
            reader = getattr(self, name) if name != "stdin" else None
            if reader is not None:
                reader.set_exception(exc)
            if not self.stream_error.done():
                self.stream_error.set_result((name, exc))
        pipe = self._transport.get_pipe_transport(_FDS[name])
        if pipe is not None:
            pipe.close()

    def __repr__(self) -> str:
        return f"ChildProcess(pid={self.pid}, returncode={self.returncode})"


async def launch(file: str, args: Sequence[str], options: SpawnOptions) -> ChildProcess:
    """
    Start ``file`` with ``args`` and wait until the OS confirms the spawn.

    Raises whatever Popen raises: OSError when the program cannot be
    executed, ValueError or TypeError for arguments it rejects.
    """
    loop = asyncio.get_running_loop()

    if file in PYTHON_EXECUTABLES:
        file = sys.executable

    env = None
    if options.env is not None:
        env = {**os.environ, **options.env}

    program = file
    kwargs: dict[str, Any] = {}
    if options.argv0 is not None:
        program = options.argv0
        kwargs["executable"] = file

    def protocol_factory() -> asyncio.subprocess.SubprocessStreamProtocol:
        return asyncio.subprocess.SubprocessStreamProtocol(limit=_STREAM_LIMIT, loop=loop)

    transport, protocol = await loop.subprocess_exec(
        protocol_factory,
        program,
        *args,
        stdin=_stdio(options.stdin),
        stdout=_stdio(options.stdout),
        stderr=_stdio(options.stderr),
        cwd=options.cwd,
        env=env,
        start_new_session=options.detached,
        **kwargs,
    )
    process = asyncio.subprocess.Process(transport, protocol, loop)
    return ChildProcess(process, transport)
