"""
Plumbing behind Subprocess.pipe().

A destination subscribes to its source's stdout with a Tap. The source
pushes every raw chunk into every live tap, so several destinations can
read the same output; a full tap blocks the source's reader, which is how
a slow destination slows the source down.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import TYPE_CHECKING, Any, Optional, Union

from spawn_pilot.errors import ConfigError, SubprocessError
from spawn_pilot.options import SpawnOptions

if TYPE_CHECKING:
    from spawn_pilot.process import Result, Subprocess

# Chunks buffered per destination before the source has to wait.
TAP_CHUNKS = 16

LOGGER = logging.getLogger(__name__)

STDIN_MISPLACED = 'The "stdin" option must be set on the first spawn() call in the pipeline.'
STDOUT_MISPLACED = 'The "stdout" option must be set on the last spawn() call in the pipeline.'


class Tap:
    """One destination's view of a source's stdout."""

    def __init__(self, source: "Subprocess"):
        self._source = source
        self._queue: asyncio.Queue = asyncio.Queue(TAP_CHUNKS)
        self.detached = False

    async def put(self, item: Union[bytes, BaseException, None]) -> None:
        """Queue a chunk, an exception, or None for end of stream."""
        if not self.detached:
            await self._queue.put(item)

    def put_nowait(self, item: Union[bytes, BaseException, None]) -> None:
        if not self.detached:
            self._queue.put_nowait(item)

    async def get(self) -> Union[bytes, BaseException, None]:
        return await self._queue.get()

    def detach(self, broken: bool = False) -> None:
        """Stop receiving; anything still queued is thrown away."""
        if self.detached:
            return
        self.detached = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._source._tap_detached(self, broken)


def check_pipe_options(source: "Subprocess", options: SpawnOptions) -> None:
    """Reject stdio overrides that would break the link between two stages."""
    if options.stdin is not None or options.input is not None:
        raise ConfigError(STDIN_MISPLACED)
    source_options: Optional[SpawnOptions] = source.options
    if source_options is not None and source_options.stdout is not None:
        raise ConfigError(STDOUT_MISPLACED)


async def feed_from_tap(handle: Any, tap: Tap) -> None:
    """Copy a tap into a destination's stdin until the source ends."""
    writer = handle.stdin
    try:
        while True:
            item = await tap.get()
            if item is None:
                break
            if isinstance(item, BaseException):
                # The source's stdout broke; take the destination's stdin down with it.
                tap.detach()
                handle.destroy("stdin", item)
                return
            writer.write(item)
            await writer.drain()
    except (BrokenPipeError, ConnectionResetError):
        LOGGER.debug("pid %s stopped reading its stdin", handle.pid)
        tap.detach(broken=True)
        return
    except OSError as exc:
        tap.detach()
        handle.destroy("stdin", exc)
        return
    tap.detach()
    writer.close()


async def combine(source: "Subprocess", destination: "Subprocess") -> "Result":
    """
    Settle a pipe stage from its own outcome and its source's outcome.

    A spawn failure on either side is raised at once. Otherwise both sides
    are awaited: the destination's failure wins and records the source's
    outcome in ``piped_from``; then a source failure is raised unchanged;
    otherwise the destination's result gets ``piped_from`` set.
    """
    await asyncio.gather(source.process, destination.process)

    source_outcome, own_outcome = await asyncio.gather(
        source, destination._settled, return_exceptions=True  # pylint: disable=protected-access
    )
    if isinstance(own_outcome, SubprocessError):
        own_outcome.piped_from = source_outcome
        raise own_outcome
    if isinstance(own_outcome, BaseException):
        raise own_outcome
    if isinstance(source_outcome, BaseException):
        raise source_outcome
    return dataclasses.replace(own_outcome, piped_from=source_outcome)
