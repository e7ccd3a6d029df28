#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Process execution and environment helpers.
"""

from __future__ import annotations

import asyncio
import json
import os
import threading
import time
import weakref
from pathlib import Path
from typing import IO, Any, List, Optional, Union

import aiofiles
from loguru import logger

from .errors import CommandError

# Anything usable as a subprocess stream: a file descriptor or an object
# with fileno(), or None to inherit ours.
StreamTarget = Union[int, IO[Any], Any, None]


# Process creation locks, one per event loop, shared by every ProcessManager.
_start_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock]" = (
    weakref.WeakKeyDictionary()
)
_start_locks_guard = threading.Lock()


def process_start_lock() -> asyncio.Lock:
    """Return the lock serializing process creation on the running event loop."""
    loop = asyncio.get_running_loop()
    with _start_locks_guard:
        lock = _start_locks.get(loop)
        if lock is None:
            lock = _start_locks[loop] = asyncio.Lock()
    return lock


class ProcessManager:
    """
    Runs external tools.

    Process creation is serialized through a lock shared by all managers
    running on the same event loop; waiting for exit is not.
    """

    def __init__(self) -> None:
        self.started = 0

    async def start(
        self,
        command: List[str],
        stdout: StreamTarget = None,
        stderr: StreamTarget = None,
        cwd: Optional[os.PathLike | str] = None,
    ) -> asyncio.subprocess.Process:
        """
        Start a command with stdin connected to the null device.

        Raises:
            CommandError: If the command cannot be started
        """
        logger.bind(command=command).debug(f"EXEC: {' '.join(command)}")

        async with process_start_lock():
            try:
                process = await asyncio.create_subprocess_exec(
                    *command,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=stdout,
                    stderr=stderr,
                    cwd=cwd,
                )
            except OSError as e:
                raise CommandError(
                    f"{command[0]}: {e.strerror or e}",
                    command=command,
                    error_code="LAUNCH_FAILED",
                ) from e
            self.started += 1
        return process

    async def run(
        self,
        command: List[str],
        stdout: StreamTarget = None,
        stderr: StreamTarget = None,
        cwd: Optional[os.PathLike | str] = None,
    ) -> None:
        """
        Run a command to completion.

        Raises:
            CommandError: If the command cannot be started or exits non-zero
        """
        start_time = time.time()
        process = await self.start(command, stdout=stdout, stderr=stderr, cwd=cwd)
        return_code = await process.wait()
        execution_time = time.time() - start_time

        if return_code != 0:
            raise CommandError(
                f"{command[0]}: exit status {return_code}",
                command=command,
                return_code=return_code,
                error_code="COMMAND_FAILED",
            )
        logger.debug(f"Command completed successfully in {execution_time:.2f}s")


def getenv(key: str, default: str) -> str:
    """Return an environment variable, or a default if unset or empty."""
    return os.environ.get(key) or default


def getenv_int(key: str, default: int) -> int:
    """Return an integer environment variable, or a default if unset or invalid."""
    value = os.environ.get(key)
    if not value:
        return default
    try:
        return int(value)
    except ValueError as e:
        logger.warning(f"environment variable {key} has invalid value: {e}")
        return default


def default_jobs() -> int:
    """Default number of concurrent compilations: two per CPU."""
    return 2 * (os.cpu_count() or 1)


def load_json(file_path: os.PathLike | str) -> Any:
    path = Path(file_path)
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


async def load_json_async(file_path: os.PathLike | str) -> Any:
    async with aiofiles.open(file_path, "r", encoding="utf-8") as f:
        return json.loads(await f.read())


def save_json(file_path: os.PathLike | str, data: Any, indent: int = 2) -> None:
    path = Path(file_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent, ensure_ascii=False)
        f.write("\n")
    logger.debug(f"JSON data saved to {path}")


def ensure_directory(path: os.PathLike | str) -> Path:
    """Create a directory and its parents; existing directories are fine."""
    dir_path = Path(path)
    dir_path.mkdir(parents=True, exist_ok=True)
    return dir_path
