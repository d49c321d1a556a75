"""
Awaitable, iterable and pipeable child processes for asyncio.

Usage:
    from spawn_pilot import spawn, SubprocessError

    # Run and wait
    result = await spawn("ls", ["-la"])
    print(result.stdout)

    # Iterate over output lines as they arrive
    async for line in spawn("ping", ["-c", "3", "localhost"]):
        print(line)

    # Pipe stdout into the next process (like bash's |)
    result = await spawn("ls").pipe("grep", [".py"]).pipe("wc", ["-l"])

    # Failures raise one exception type
    try:
        await spawn("false")
    except SubprocessError as error:
        print(error.exit_code, error.stderr)

    # From synchronous code
    result = run("echo", ["hello"])
"""

from __future__ import annotations

import asyncio
from typing import Any, Sequence

from spawn_pilot.errors import ConfigError, ProcessAborted, SubprocessError
from spawn_pilot.native import ChildProcess
from spawn_pilot.options import CancelToken, SpawnOptions
from spawn_pilot.process import Result, State, Subprocess, spawn

__version__ = "0.1.0"

__all__ = [
    "spawn",
    "run",
    "Subprocess",
    "Result",
    "State",
    "SubprocessError",
    "ProcessAborted",
    "ConfigError",
    "CancelToken",
    "SpawnOptions",
    "ChildProcess",
    "__version__",
]


def run(file: str, args: Sequence[str] = (), **options: Any) -> Result:
    """
    Convenience function to run a command from synchronous code.

    Starts its own event loop, so it cannot be called from a coroutine.

    Usage:
        result = run("ls", ["-la"])
        result = run("cat", input="hello")
    """
    async def _main() -> Result:
        return await spawn(file, args, **options)

    return asyncio.run(_main())
