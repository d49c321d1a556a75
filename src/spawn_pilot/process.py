"""The Subprocess control object returned by spawn()."""

from __future__ import annotations

import asyncio
import codecs
import enum
import logging
import shlex
import signal
import time
from dataclasses import dataclass
from typing import Any, Generator, Mapping, Optional, Sequence, Union

from spawn_pilot.errors import ConfigError, ProcessAborted, SubprocessError, subprocess_error
from spawn_pilot.native import ChildProcess, launch
from spawn_pilot.options import SpawnOptions
from spawn_pilot.output import STREAMS, LineIterator, LineStream, OutputBuffer
from spawn_pilot.pipe import Tap, check_pipe_options, combine, feed_from_tap

LOGGER = logging.getLogger(__name__)

_READ_SIZE = 8192


class State(enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SETTLED = "settled"


@dataclass(frozen=True)
class Result:
    """Result of a successful subprocess."""
    command: str
    duration_ms: float
    stdout: str
    stderr: str
    output: str
    exit_code: Optional[int] = None
    signal_name: Optional[str] = None
    piped_from: Union["Result", SubprocessError, None] = None

    def __str__(self) -> str:
        return self.stdout


def signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"signal {signum}"


def _mark_retrieved(future: asyncio.Future) -> None:
    # Callers may never await a failed stage; don't let asyncio log it.
    if not future.cancelled():
        future.exception()


class Subprocess:
    """
    A child process that is awaitable, async-iterable and pipeable.

    Create with spawn(). Awaiting returns a Result or raises SubprocessError;
    the outcome is computed once and every await returns the same object.

        sub = spawn("ls", ["-la"])
        async for line in sub:          # stdout and stderr, as they arrive
            print(line)
        result = await sub

    Attributes:
        command: The program and arguments, rendered as a shell would read them.
        start_time: time.monotonic() when the object was created.
        state: PENDING until the OS confirms the spawn, then RUNNING, then SETTLED.
        process: Future resolving to the ChildProcess once spawned.
        stdout, stderr: Async iterables over the lines of one stream.
    """

    def __init__(
        self,
        file: str,
        args: Sequence[str] = (),
        options: Optional[Mapping[str, Any]] = None,
        source: Optional["Subprocess"] = None,
    ):
        loop = asyncio.get_running_loop()
        args = list(args)

        self.command = shlex.join(str(part) for part in [file, *args])
        self.start_time = time.monotonic()
        self.state = State.PENDING
        self.options: Optional[SpawnOptions] = None
        self.process: asyncio.Future = loop.create_future()
        self._settled: asyncio.Future = loop.create_future()
        self._output = OutputBuffer()
        self._source = source
        self._handle: Optional[ChildProcess] = None
        self._taps: list[Tap] = []
        self._stdout_done = False
        self._decided = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._io_tasks: list[asyncio.Future] = []

        self.stdout = LineStream(self._output, self, "stdout")
        self.stderr = LineStream(self._output, self, "stderr")

        self._result: asyncio.Future
        if source is None:
            self._result = self._settled
        else:
            self._result = loop.create_task(combine(source, self))
        for future in (self.process, self._settled, self._result):
            future.add_done_callback(_mark_retrieved)

        try:
            self.options = SpawnOptions.from_kwargs(options or {})
            if source is not None:
                check_pipe_options(source, self.options)
        except ConfigError as exc:
            self._fail_early(exc)
            return

        tap = source._subscribe() if source is not None else None
        self._task = loop.create_task(self._run(file, args, tap))

    def __await__(self) -> Generator[Any, None, Result]:
        return self._result.__await__()

    def __aiter__(self) -> LineIterator:
        return LineIterator(self._output, self, STREAMS)

    def pipe(self, file: str, args: Sequence[str] = (), **options: Any) -> "Subprocess":
        """
        Start another process reading this one's stdout.

        Returns the new stage. Awaiting it waits for both processes; see
        pipe.combine() for which outcome wins.
        """
        return Subprocess(file, args, options, source=self)

    @property
    def pid(self) -> Optional[int]:
        return self._handle.pid if self._handle is not None else None

    def _elapsed_ms(self) -> float:
        return max(0.0, (time.monotonic() - self.start_time) * 1000)

    async def _run(self, file: str, args: list, tap: Optional[Tap]) -> None:
        options = self.options
        try:
            handle = await launch(file, args, options)
        except (OSError, ValueError, TypeError) as exc:
            LOGGER.info("could not spawn %s: %s", self.command, exc)
            if tap is not None:
                tap.detach()
            self._fail_early(exc)
            return

        self._handle = handle
        self.state = State.RUNNING
        self.process.set_result(handle)
        LOGGER.debug("spawned %s (pid %s)", self.command, handle.pid)

        readers = [asyncio.ensure_future(self._read(name, getattr(handle, name))) for name in STREAMS]
        writer = asyncio.ensure_future(self._write_stdin(handle, tap))
        exited = asyncio.ensure_future(self._wait_exit(handle, readers))
        self._io_tasks = [*readers, writer, exited]

        if options.timeout is not None:
            # The budget counts from creation, not from when the OS confirmed the spawn.
            remaining = max(0.0, options.timeout - (time.monotonic() - self.start_time))
            self._timer = asyncio.get_running_loop().call_later(remaining, self._on_timeout)
        token = options.signal
        if token is not None:
            if token.cancelled:
                # Fired before the child existed: kill it and let the exit decide.
                LOGGER.debug("%s spawned with a cancelled token", self.command)
                handle.send_signal(options.kill_signal)
            else:
                token.add_callback(self._abort)

        try:
            await asyncio.wait({exited, handle.stream_error}, return_when=asyncio.FIRST_COMPLETED)
            if not self._decided and handle.stream_error.done():
                # A broken stream wins, but the output is only complete once the child is gone.
                self._decided = True
                _, exc = handle.stream_error.result()
                await exited
                self._finish(self._error(cause=exc))
                return
            returncode = await exited
            if not self._decided:
                self._decided = True
                self._finish(self._outcome(returncode))
        except asyncio.CancelledError:
            handle.kill()
            for task in self._io_tasks:
                task.cancel()
            if not self._settled.done():
                self._settled.cancel()
            raise
        finally:
            self._stop_timer()
            if token is not None:
                token.remove_callback(self._abort)

    async def _wait_exit(self, handle: ChildProcess, readers: list) -> int:
        returncode = await handle.wait()
        await asyncio.gather(*readers)
        LOGGER.debug("%s exited with %s", self.command, returncode)
        return returncode

    async def _read(self, name: str, reader: Optional[asyncio.StreamReader]) -> None:
        error: Optional[BaseException] = None
        if reader is not None:
            decoder = codecs.getincrementaldecoder(self.options.encoding)(errors="replace")
            while True:
                try:
                    chunk = await reader.read(_READ_SIZE)
                except Exception as exc:
                    error = exc
                    self._handle.destroy(name, exc)
                    break
                if not chunk:
                    break
                text = decoder.decode(chunk)
                if text:
                    self._output.feed(name, text)
                if name == "stdout":
                    for tap in list(self._taps):
                        await tap.put(chunk)
            tail = decoder.decode(b"", final=True)
            if tail:
                self._output.feed(name, tail)

        self._output.close(name)
        if name == "stdout":
            self._stdout_done = True
            for tap in list(self._taps):
                await tap.put(error)

    async def _write_stdin(self, handle: ChildProcess, tap: Optional[Tap]) -> None:
        if tap is not None:
            await feed_from_tap(handle, tap)
            return
        writer = handle.stdin
        if writer is None:
            return
        data = self.options.input_bytes
        try:
            if data:
                writer.write(data)
                await writer.drain()
            writer.close()
        except (BrokenPipeError, ConnectionResetError):
            LOGGER.debug("%s did not read all of its input", self.command)
        except OSError as exc:
            handle.destroy("stdin", exc)

    def _subscribe(self) -> Tap:
        tap = Tap(self)
        if self._stdout_done:
            tap.put_nowait(None)
        else:
            self._taps.append(tap)
        return tap

    def _tap_detached(self, tap: Tap, broken: bool) -> None:
        if tap in self._taps:
            self._taps.remove(tap)
        if (
            broken
            and not self._taps
            and not self._stdout_done
            and self._handle is not None
            and not self._output.is_claimed("stdout")
        ):
            # Nobody reads this stdout any more; let the writer see EPIPE.
            LOGGER.debug("closing unread stdout of %s", self.command)
            self._handle.destroy("stdout")

    def _on_timeout(self) -> None:
        self._timer = None
        if self._settled.done():
            return
        LOGGER.debug("%s timed out after %ss", self.command, self.options.timeout)
        self._handle.send_signal(self.options.kill_signal)

    def _stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _abort(self, reason: Any = None) -> None:
        if self._decided:
            return
        self._decided = True
        LOGGER.debug("aborting %s", self.command)
        self._handle.send_signal(self.options.kill_signal)
        self._finish(self._error(cause=ProcessAborted(reason)))

    def _outcome(self, returncode: int) -> Union[Result, SubprocessError]:
        if returncode < 0:
            return self._error(signal_name=signal_name(-returncode))
        if returncode > 0:
            return self._error(exit_code=returncode)
        stdout, stderr, output = self._output.snapshot()
        return Result(
            command=self.command,
            duration_ms=self._elapsed_ms(),
            stdout=stdout,
            stderr=stderr,
            output=output,
        )

    def _error(self, **kwargs: Any) -> SubprocessError:
        stdout, stderr, output = self._output.snapshot()
        return subprocess_error(
            self.command,
            stdout=stdout,
            stderr=stderr,
            output=output,
            duration_ms=self._elapsed_ms(),
            **kwargs,
        )

    def _fail_early(self, exc: BaseException) -> None:
        error = subprocess_error(self.command, duration_ms=self._elapsed_ms(), cause=exc)
        self._decided = True
        self.process.set_exception(error)
        self._output.close_all()
        self._stdout_done = True
        for tap in self._taps:
            tap.put_nowait(None)
        self._finish(error)

    def _finish(self, outcome: Union[Result, SubprocessError]) -> None:
        if self._settled.done():
            return
        self.state = State.SETTLED
        self._stop_timer()
        LOGGER.debug("%s settled after %.1fms", self.command, self._elapsed_ms())
        if isinstance(outcome, BaseException):
            self._settled.set_exception(outcome)
        else:
            self._settled.set_result(outcome)

    def __repr__(self) -> str:
        return f"Subprocess({self.command!r}, state={self.state.value})"


def spawn(file: str, args: Sequence[str] = (), **options: Any) -> Subprocess:
    """
    Start a process and return its Subprocess.

    Must be called while an asyncio event loop is running. Never raises for
    process failures: those come out of ``await`` (or iteration) as
    SubprocessError.

    Args:
        file: Program to run. "python"/"python3" run the current interpreter.
        args: Program arguments.
        **options: See SpawnOptions (timeout, signal, input, stdin, stdout,
                   stderr, cwd, env, argv0, detached, encoding, kill_signal).
    """
    return Subprocess(file, args, options)
