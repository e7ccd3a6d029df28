#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Link/archive stage: produces executables, static libraries, shared
libraries and plugins from compiled objects, but only when the target is
older than something it is built from.
"""

from __future__ import annotations

import asyncio
import os
import shlex
import sys
from typing import List, Optional, Sequence, TextIO

from loguru import logger

from .compiler import DependencyProtocol
from .config import EngineConfig
from .options import Options, most_recent_mod_time
from .platform_info import Platform, current_platform, endash, find_library
from .stat_cache import StatCache
from .staleness import StaleReason, StalenessEngine, StalenessVerdict, file_is_newer
from .utils import ProcessManager


def library_files(libraries: Sequence[str]) -> List[str]:
    """
    Return the library values that name files: everything except option
    words such as ``-lname`` and the argument following ``-framework``.
    """
    files = []
    skip_next = False
    for value in libraries:
        if skip_next:
            skip_next = False
            continue
        if value == "-framework":
            skip_next = True
            continue
        if not value.startswith("-"):
            files.append(value)
    return files


def check_link(
    target: os.PathLike | str,
    inputs: Sequence[str],
    libraries: Optional[Options] = None,
    options: Optional[Options] = None,
    other_files: Sequence[str] = (),
    stat_cache: Optional[StatCache] = None,
) -> StalenessVerdict:
    """
    Decide whether a linked target is up to date.

    The target is stale if it is missing, if the options or library list
    changed after it was made, if the newest input or other file is newer,
    or if any library given as a file is newer.

    Raises:
        OSError: If any stat other than the target's fails, including an
            input that does not exist
    """
    target = os.fspath(target)
    engine = StalenessEngine(stat_cache)

    def verdict(result: StalenessVerdict) -> StalenessVerdict:
        logger.debug(f"LINK: {target!r} -> {result.caption}")
        return result

    target_info = engine.target_info(target)
    if target_info is None:
        return verdict(StalenessVerdict.stale(StaleReason.TARGET_MISSING))

    given = [o for o in (options, libraries) if o is not None]
    if most_recent_mod_time(*given) > target_info.st_mtime_ns:
        return verdict(StalenessVerdict.stale(StaleReason.OPTIONS_NEWER))

    newest_input = engine.newest_of(inputs)
    if newest_input is not None and newest_input > target_info.st_mtime_ns:
        return verdict(StalenessVerdict.stale(StaleReason.INPUT_NEWER))

    newest_other = engine.newest_of(other_files)
    if newest_other is not None and newest_other > target_info.st_mtime_ns:
        return verdict(StalenessVerdict.stale(StaleReason.OTHER_INPUT_NEWER))

    for path in library_files(libraries.values if libraries is not None else ()):
        if file_is_newer(engine.stat_cache.stat(path), target_info):
            return verdict(StalenessVerdict.stale(StaleReason.LIBRARY_NEWER, path))

    return verdict(StalenessVerdict.current())


def resolve_libraries(
    libraries: Sequence[str],
    dirs: Sequence[str],
    platform: Optional[Platform] = None,
    stat_cache: Optional[StatCache] = None,
) -> List[str]:
    """
    Replace each ``-lname`` with the path of the library found on ``dirs``.

    Libraries that cannot be found are left as ``-lname`` for the linker to
    search for and a warning is logged.
    """
    platform = platform or current_platform()
    resolved = []
    skip_next = False
    for value in libraries:
        if skip_next:
            skip_next = False
            resolved.append(value)
            continue
        if value == "-framework":
            skip_next = True
            resolved.append(value)
            continue
        if value.startswith("-l") and len(value) > 2:
            path = find_library(dirs, value[2:], platform, stat_cache)
            if path is None:
                logger.warning(f"{value[2:]!r} library not found on path {list(dirs)}")
            else:
                value = os.fspath(path)
        resolved.append(value)
    return resolved


class Linker:
    """
    Runs the linker, archiver or shared library tool for one target.

    Each operation returns True when the tool ran and False when the target
    was already up to date, and raises ``CommandError`` if the tool fails.
    """

    def __init__(
        self,
        compiler: DependencyProtocol,
        platform: Optional[Platform] = None,
        config: Optional[EngineConfig] = None,
        stat_cache: Optional[StatCache] = None,
        process_manager: Optional[ProcessManager] = None,
        stderr: Optional[TextIO] = None,
    ) -> None:
        self.compiler = compiler
        self.command = shlex.split(compiler.name())
        self.platform = platform or current_platform()
        self.config = config or EngineConfig.from_env()
        self.stat_cache = stat_cache or StatCache()
        self.process_manager = process_manager or ProcessManager()
        self.stderr = stderr

    def _is_current(
        self,
        target: str,
        inputs: Sequence[str],
        libraries: Optional[Options] = None,
        options: Optional[Options] = None,
        other_files: Sequence[str] = (),
    ) -> bool:
        if self.config.ignore_dependencies:
            return False
        return bool(check_link(target, inputs, libraries, options, other_files, self.stat_cache))

    def _echo(self, summary: str, command: List[str]) -> None:
        if self.config.quiet:
            return
        stream = self.stderr or sys.stderr
        stream.write((shlex.join(command) if self.config.verbose else summary) + "\n")
        stream.flush()

    async def _run(self, target: str, summary: str, command: List[str]) -> bool:
        self._echo(summary, command)
        self.stat_cache.invalidate(target)
        await self.process_manager.run(command)
        return True

    async def link_async(
        self,
        target: Optional[str],
        inputs: Sequence[str],
        libraries: Optional[Options] = None,
        options: Optional[Options] = None,
        other_files: Sequence[str] = (),
        frameworks: Sequence[str] = (),
    ) -> bool:
        """Link an executable, the platform's default name if target is None."""
        target = target or self.platform.default_executable
        libraries = libraries or Options()
        options = options or Options()
        if self._is_current(target, inputs, libraries, options, other_files):
            return False
        command = [
            *self.command,
            *options.values,
            *inputs,
            *other_files,
            *endash(libraries.values, self.platform),
            *frameworks,
            "-o",
            target,
        ]
        return await self._run(target, f"ld {target}", command)

    async def make_library_async(self, target: str, inputs: Sequence[str]) -> bool:
        """Create a static library from object files."""
        if self._is_current(target, inputs):
            return False
        command = self.platform.archive_command(target, inputs)
        return await self._run(target, f"ar {target}", command)

    async def _make_shared_async(
        self,
        kind: str,
        target: str,
        inputs: Sequence[str],
        libraries: Optional[Options],
        options: Optional[Options],
        other_files: Sequence[str],
        frameworks: Sequence[str],
    ) -> bool:
        libraries = libraries or Options()
        options = options or Options()
        if self._is_current(target, inputs, libraries, options, other_files):
            return False
        make_command = (
            self.platform.plugin_command if kind == "plugin" else self.platform.dll_command
        )
        command = make_command(
            self.command,
            target,
            [*inputs, *other_files],
            libraries.values,
            options.values,
            frameworks,
        )
        return await self._run(target, f"{kind} {target}", command)

    async def make_dll_async(
        self,
        target: str,
        inputs: Sequence[str],
        libraries: Optional[Options] = None,
        options: Optional[Options] = None,
        other_files: Sequence[str] = (),
        frameworks: Sequence[str] = (),
    ) -> bool:
        """Create a shared/dynamic library."""
        return await self._make_shared_async(
            "dll", target, inputs, libraries, options, other_files, frameworks
        )

    async def make_plugin_async(
        self,
        target: str,
        inputs: Sequence[str],
        libraries: Optional[Options] = None,
        options: Optional[Options] = None,
        other_files: Sequence[str] = (),
        frameworks: Sequence[str] = (),
    ) -> bool:
        """Create a loadable plugin."""
        return await self._make_shared_async(
            "plugin", target, inputs, libraries, options, other_files, frameworks
        )

    def link(self, *args, **kwargs) -> bool:
        return asyncio.run(self.link_async(*args, **kwargs))

    def make_library(self, target: str, inputs: Sequence[str]) -> bool:
        return asyncio.run(self.make_library_async(target, inputs))

    def make_dll(self, *args, **kwargs) -> bool:
        return asyncio.run(self.make_dll_async(*args, **kwargs))

    def make_plugin(self, *args, **kwargs) -> bool:
        return asyncio.run(self.make_plugin_async(*args, **kwargs))
