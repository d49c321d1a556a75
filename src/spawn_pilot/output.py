"""
Output capture and line iteration.

Every decoded chunk a child writes goes to exactly one place: the buffers
that become Result.stdout / stderr / output, or the queue of a LineIterator
that claimed the stream. Iterating a stream therefore empties the matching
result fields.
"""

from __future__ import annotations

import asyncio
import collections
import re
from typing import Any, Awaitable, Iterable, Optional

STREAMS = ("stdout", "stderr")

_LINE_BREAK = re.compile(r"\r?\n")


def trim_newline(text: str) -> str:
    """Drop a single trailing newline (``\\n`` or ``\\r\\n``)."""
    if text.endswith("\r\n"):
        return text[:-2]
    if text.endswith("\n"):
        return text[:-1]
    return text


def split_lines(text: str) -> tuple[list[str], str]:
    """Split text into complete lines and the unterminated remainder."""
    parts = _LINE_BREAK.split(text)
    return parts[:-1], parts[-1]


class OutputBuffer:
    """Collects stdout/stderr text and routes it to claiming iterators."""

    def __init__(self) -> None:
        self._text: dict[str, list[str]] = {name: [] for name in STREAMS}
        self._merged: list[str] = []
        self._last_stream: Optional[str] = None
        self._claims: dict[str, LineIterator] = {}
        self._iterated: set[str] = set()
        self._closed: set[str] = set()

    def is_claimed(self, name: str) -> bool:
        return name in self._claims

    def claim(self, names: Iterable[str], iterator: "LineIterator") -> None:
        """Route every stream in ``names`` to ``iterator``, or none of them."""
        names = tuple(names)
        for name in names:
            if name in self._iterated:
                raise RuntimeError(f"{name} can only be iterated once")
        for name in names:
            self._iterated.add(name)
            self._claims[name] = iterator
            if name in self._closed:
                iterator.push(name, None)

    def release(self, name: str, leftover: str = "") -> None:
        """Stop routing a stream to its iterator, keeping ``leftover`` text."""
        self._claims.pop(name, None)
        if leftover:
            self._append(name, leftover)

    def feed(self, name: str, text: str) -> None:
        iterator = self._claims.get(name)
        if iterator is not None:
            iterator.push(name, text)
        else:
            self._append(name, text)

    def close(self, name: str) -> None:
        if name in self._closed:
            return
        self._closed.add(name)
        iterator = self._claims.get(name)
        if iterator is not None:
            iterator.push(name, None)

    def close_all(self) -> None:
        for name in STREAMS:
            self.close(name)

    def _append(self, name: str, text: str) -> None:
        self._text[name].append(text)
        if (
            self._last_stream not in (None, name)
            and self._merged
            and not self._merged[-1].endswith("\n")
        ):
            # stdout and stderr blocks are always newline-separated
            self._merged.append("\n")
        self._merged.append(text)
        self._last_stream = name

    def snapshot(self) -> tuple[str, str, str]:
        """Return (stdout, stderr, output) with one trailing newline trimmed."""
        return (
            trim_newline("".join(self._text["stdout"])),
            trim_newline("".join(self._text["stderr"])),
            trim_newline("".join(self._merged)),
        )


class LineIterator:
    """
    Async iterator over the lines of one or more output streams.

    Lines come out in the order their chunks arrived. Once every stream has
    ended the subprocess itself is awaited, so a failed process makes the
    iteration raise its SubprocessError after the last line.

    Breaking out of ``async for`` leaves the claim in place; call aclose()
    (or use contextlib.aclosing) to hand the unread text back to the result.
    """

    def __init__(self, buffer: OutputBuffer, subprocess: Awaitable[Any], names: Iterable[str]):
        self._buffer = buffer
        self._subprocess = subprocess
        self._names = tuple(names)
        self._queue: asyncio.Queue = asyncio.Queue()
        self._partial = {name: "" for name in self._names}
        self._open = set(self._names)
        self._lines: collections.deque[tuple[str, str]] = collections.deque()
        self._finished = False
        buffer.claim(self._names, self)

    def push(self, name: str, text: Optional[str]) -> None:
        """Deliver a chunk, or None once the stream has ended."""
        self._queue.put_nowait((name, text))

    def __aiter__(self) -> "LineIterator":
        return self

    async def __anext__(self) -> str:
        while not self._lines:
            if self._finished:
                raise StopAsyncIteration
            if not self._open:
                self._finished = True
                self._release()
                await self._subprocess
                raise StopAsyncIteration
            name, text = await self._queue.get()
            self._take(name, text)
        return self._lines.popleft()[1]

    def _take(self, name: str, text: Optional[str]) -> None:
        if text is None:
            self._open.discard(name)
            tail = self._partial[name]
            self._partial[name] = ""
            if tail:
                self._lines.append((name, tail))
            return
        lines, self._partial[name] = split_lines(self._partial[name] + text)
        self._lines.extend((name, line) for line in lines)

    def _release(self) -> None:
        # unread lines, then the partial line, then chunks still queued
        leftover = {name: "" for name in self._names}
        for name, line in self._lines:
            leftover[name] += line + "\n"
        self._lines.clear()
        for name in self._names:
            leftover[name] += self._partial[name]
            self._partial[name] = ""
        while not self._queue.empty():
            name, text = self._queue.get_nowait()
            if text is not None:
                leftover[name] += text
        for name in self._names:
            self._buffer.release(name, leftover[name])

    async def aclose(self) -> None:
        """Stop iterating; text not yet yielded goes back to the result."""
        if self._finished:
            return
        self._finished = True
        self._release()


class LineStream:
    """The ``stdout`` / ``stderr`` attribute of a Subprocess."""

    def __init__(self, buffer: OutputBuffer, subprocess: Awaitable[Any], name: str):
        self._buffer = buffer
        self._subprocess = subprocess
        self.name = name

    def __aiter__(self) -> LineIterator:
        return LineIterator(self._buffer, self._subprocess, (self.name,))

    def __repr__(self) -> str:
        return f"LineStream({self.name!r})"
