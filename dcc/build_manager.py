#!/usr/bin/env python3
"""
Compilation scheduler: compiles a batch of translation units concurrently,
skipping those whose object files are up to date.
"""

from __future__ import annotations

import asyncio
import os
import sys
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, TextIO, Tuple

from loguru import logger

from .compiler import DependencyProtocol
from .config import EngineConfig
from .files import deps_filename, object_filename
from .options import Options
from .output_mux import OutputMux
from .platform_info import Platform, current_platform
from .stat_cache import StatCache
from .staleness import StaleReason, StalenessEngine, StalenessVerdict
from .utils import ensure_directory, load_json, save_json

COMPILE_COMMANDS_FILENAME = "compile_commands.json"


@dataclass(frozen=True, slots=True)
class CompilationTask:
    """One translation unit and the files generated for it."""

    source: str
    object_file: str
    deps_file: str
    options: Options


@dataclass
class BuildMetrics:
    """Counters for one ``compile_all`` run."""

    total_files: int = 0
    compiled_files: int = 0
    up_to_date_files: int = 0
    failed_files: int = 0
    total_time: float = 0.0
    failures: List[Tuple[str, BaseException]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_files": self.total_files,
            "compiled_files": self.compiled_files,
            "up_to_date_files": self.up_to_date_files,
            "failed_files": self.failed_files,
            "total_time": self.total_time,
        }


class BuildManager:
    """
    Compiles sources with a bounded pool of concurrent workers.

    A feeder puts source paths on a bounded work queue, ``jobs`` workers each
    take one path at a time, decide whether it needs compiling and if so run
    the compiler with its diagnostics routed through an ``OutputMux``. Every
    worker reports an outcome per unit to a results queue drained by a
    collector, so one failing unit never stops the others.
    """

    def __init__(
        self,
        compiler: DependencyProtocol,
        config: Optional[EngineConfig] = None,
        stat_cache: Optional[StatCache] = None,
        platform: Optional[Platform] = None,
        stream: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
    ) -> None:
        """
        Args:
            compiler: Dependency protocol of the active toolchain
            config: Engine settings, from the environment if omitted
            stat_cache: Stat cache shared with the link stage
            platform: Platform naming conventions
            stream: Where compiler diagnostics are written, stderr by default
            stdout: Where commands are echoed, stdout by default
        """
        self.compiler = compiler
        self.config = config or EngineConfig.from_env()
        self.stat_cache = stat_cache or StatCache()
        self.staleness = StalenessEngine(self.stat_cache)
        self.platform = platform or current_platform()
        self.stream = stream
        self.stdout = stdout
        self.metrics = BuildMetrics()

        logger.debug(
            f"Initialized BuildManager: compiler={compiler.name()}, "
            f"jobs={self.config.jobs}, objdir={self.config.objdir}"
        )

    def plan_task(
        self, source: str, options: Options, objdir: Optional[str] = None
    ) -> CompilationTask:
        """Work out the object and dependency record paths for a source."""
        objdir = objdir if objdir is not None else self.config.objdir
        object_file = object_filename(source, objdir, self.platform)
        return CompilationTask(
            source=source,
            object_file=object_file,
            deps_file=deps_filename(object_file, self.config.deps_dir),
            options=options,
        )

    def check_task(self, task: CompilationTask) -> StalenessVerdict:
        """
        Decide whether a unit's object file is up to date using its
        dependency record.

        Raises:
            DependencyFileError: If the dependency record cannot be parsed
            FileNotFoundError: If the source file does not exist
            OSError: If a stat or read fails other than by absence
        """
        if self.config.ignore_dependencies:
            return StalenessVerdict.stale(StaleReason.FORCED)

        source_info = self.stat_cache.stat(task.source)

        try:
            target, deps = self.compiler.read_dependencies(task.deps_file)
        except FileNotFoundError:
            logger.debug(f"DEPS: {task.source!r}: no dependency record {task.deps_file!r}")
            return StalenessVerdict.stale(StaleReason.DEPENDENCY_MISSING, task.deps_file)

        if os.path.basename(target) != os.path.basename(task.object_file):
            logger.warning(
                f"got dependency target {target!r} for object file {task.object_file!r}"
            )

        return self.staleness.check(
            task.object_file, deps, source_info, task.options, task.source
        )

    def _echo(self, task: CompilationTask) -> None:
        if self.config.quiet:
            return
        displayed = [self.compiler.name()]
        if self.config.verbose:
            displayed.extend(task.options.values)
            displayed.append(task.source)
            displayed.extend(["-o", task.object_file])
        else:
            displayed.append(task.source)
        stdout = self.stdout or sys.stdout
        stdout.write(" ".join(displayed) + "\n")
        stdout.flush()

    async def compile_one(self, task: CompilationTask, mux: OutputMux) -> bool:
        """
        Compile one unit unless it is up to date.

        Returns:
            True if the compiler ran, False if the unit was skipped

        Raises:
            Whatever the dependency check or the compiler raised
        """
        ensure_directory(os.path.dirname(task.object_file) or ".")
        ensure_directory(os.path.dirname(task.deps_file) or ".")

        # Dependency records and stats are read off the event loop.
        if await asyncio.to_thread(self.check_task, task):
            return False

        self.stat_cache.invalidate(task.object_file)
        self._echo(task)
        with mux.new_writer() as writer:
            await self.compiler.compile(
                task.source,
                task.object_file,
                task.deps_file,
                task.options.values,
                writer,
            )
        return True

    async def compile_all_async(
        self,
        sources: Sequence[str],
        options: Options,
        objdir: Optional[str] = None,
    ) -> bool:
        """
        Compile every source that is not up to date.

        Args:
            sources: Source files to compile
            options: Compiler options used for every source
            objdir: Object directory, the configured one if omitted

        Returns:
            True if every source compiled or was already up to date
        """
        start_time = time.time()
        self.metrics = metrics = BuildMetrics(total_files=len(sources))
        if not sources:
            return True

        jobs = min(self.config.jobs, len(sources))
        work: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=jobs)
        results: asyncio.Queue[Tuple[str, Optional[BaseException], bool]] = asyncio.Queue()

        logger.bind(source_count=len(sources), jobs=jobs).info(
            f"Compiling {len(sources)} files with {jobs} workers"
        )

        async def feed() -> None:
            for source in sources:
                await work.put(source)
            for _ in range(jobs):
                await work.put(None)

        async def worker(mux: OutputMux) -> None:
            while True:
                source = await work.get()
                if source is None:
                    return
                try:
                    task = self.plan_task(source, options, objdir)
                    compiled = await self.compile_one(task, mux)
                except Exception as e:
                    await results.put((source, e, False))
                else:
                    await results.put((source, None, compiled))

        async def collect() -> None:
            for _ in range(len(sources)):
                source, error, compiled = await results.get()
                if error is not None:
                    logger.bind(file=source).error(f"{source}: {error}")
                    metrics.failures.append((source, error))
                    metrics.failed_files += 1
                elif compiled:
                    metrics.compiled_files += 1
                else:
                    metrics.up_to_date_files += 1

        async with OutputMux(self.stream) as mux:
            await asyncio.gather(
                feed(), collect(), *(worker(mux) for _ in range(jobs))
            )

        metrics.total_time = time.time() - start_time
        logger.bind(metrics=metrics.to_dict()).info(
            f"Compiled {metrics.compiled_files} of {metrics.total_files} files "
            f"in {metrics.total_time:.2f}s"
        )
        return not metrics.failures

    def compile_all(
        self,
        sources: Sequence[str],
        options: Options,
        objdir: Optional[str] = None,
    ) -> bool:
        """Compile sources synchronously."""
        return asyncio.run(self.compile_all_async(sources, options, objdir))

    def compile_commands(
        self, sources: Sequence[str], options: Options, objdir: Optional[str] = None
    ) -> List[Dict[str, str]]:
        """Return ``compile_commands.json`` entries for the sources."""
        directory = os.getcwd()
        entries = []
        for source in sources:
            task = self.plan_task(source, options, objdir)
            command = " ".join(
                [self.compiler.name(), *options.values, "-o", task.object_file, "-c", source]
            )
            entries.append({"directory": directory, "command": command, "file": source})
        return entries

    def write_compile_commands(
        self,
        path: os.PathLike | str,
        sources: Sequence[str],
        options: Options,
        objdir: Optional[str] = None,
        append: bool = False,
    ) -> None:
        """
        Write, or append to, a ``compile_commands.json`` file.

        Raises:
            OSError: If the file cannot be read or written
            ValueError: If an existing file being appended to is not valid JSON
        """
        entries: List[Dict[str, str]] = []
        if append:
            try:
                entries = list(load_json(path))
            except FileNotFoundError:
                pass
        entries.extend(self.compile_commands(sources, options, objdir))
        save_json(path, entries)
        logger.debug(f"Wrote {len(entries)} entries to {path}")
