#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Dependency protocols: how a toolchain is asked to compile a translation unit
while recording which files the unit depended on, and how that record is
read back on the next build.

Two toolchain families are supported:

- gcc-style compilers (gcc, clang, icc and friends) write a make-format
  dependency file themselves when given ``-MD -MF <file>``;
- Microsoft-style compilers print one ``/showIncludes`` note per header
  opened, mixed in with their other output, which has to be scraped.
"""

from __future__ import annotations

import asyncio
import os
import shlex
from typing import Any, List, Optional, Protocol, Sequence, Tuple, Union, runtime_checkable

import aiofiles
from loguru import logger

from .errors import (
    CommandError,
    MultipleTargetsError,
    NoColonError,
    ProtocolNotImplementedError,
    UnexpectedEOFError,
    UnsupportedCompilerError,
)
from .utils import ProcessManager

CommandLike = Union[str, Sequence[str]]

SHOW_INCLUDES_PREFIX = "Note: including file:"

GCC_STYLE_NAMES = frozenset({"cc", "c++", "gcc", "g++", "clang", "clang++", "icc", "icpc"})
GCC_STYLE_SUBSTRINGS = ("gcc", "g++", "clang")

# Include-trace toolchains and the trace prefix they print, None where the
# trace format is not known.
INCLUDE_TRACE_NAMES = {
    "cl": SHOW_INCLUDES_PREFIX,
    "clang-cl": SHOW_INCLUDES_PREFIX,
    "icl": None,
}


def _command_words(command: CommandLike) -> List[str]:
    if isinstance(command, str):
        return command.split()
    return list(command)


@runtime_checkable
class DependencyProtocol(Protocol):
    """The operations the build engine needs from a compiler."""

    def name(self) -> str:
        """Name of the compiler, as shown to the user."""
        ...

    async def compile(
        self,
        source: str,
        object_file: str,
        deps_file: str,
        options: Sequence[str],
        stderr: Any,
    ) -> None:
        """
        Compile ``source`` to ``object_file`` and write its dependency
        record to ``deps_file``. Diagnostics go to ``stderr``. Raises on
        failure.
        """
        ...

    def read_dependencies(self, deps_file: str) -> Tuple[str, List[str]]:
        """Return the target and dependency paths recorded in ``deps_file``."""
        ...


class GccStyleCompiler:
    """
    Compiler using gcc-style options to generate make-format dependencies.

    Used for gcc, clang, icc and any compiler with "gcc" or "clang" in its
    command name, such as cross compilers named
    ``x86_64-linux-gnu-gcc``.
    """

    def __init__(
        self, command: CommandLike, process_manager: Optional[ProcessManager] = None
    ) -> None:
        self.command = _command_words(command)
        if not self.command:
            raise ValueError("empty compiler command")
        self.process_manager = process_manager or ProcessManager()

    def name(self) -> str:
        return shlex.join(self.command)

    def compile_command(
        self, source: str, object_file: str, deps_file: str, options: Sequence[str]
    ) -> List[str]:
        return [
            *self.command, *options,
            "-MD", "-MF", deps_file, "-c", source, "-o", object_file,
        ]

    async def compile(
        self,
        source: str,
        object_file: str,
        deps_file: str,
        options: Sequence[str],
        stderr: Any,
    ) -> None:
        command = self.compile_command(source, object_file, deps_file, options)
        await self.process_manager.run(command, stderr=stderr)

    def read_dependencies(self, deps_file: str) -> Tuple[str, List[str]]:
        """
        Read a make-style dependency file.

        Raises:
            OSError: If the file cannot be read (FileNotFoundError if absent)
            UnexpectedEOFError: If the file is empty
            NoColonError: If the first rule has no ':'
            MultipleTargetsError: If a second target is found
        """
        with open(deps_file, "r", encoding="utf-8", errors="replace") as f:
            words = iter(f.read().split())

        target = next(words, None)
        if target is None:
            raise UnexpectedEOFError(deps_file)
        if target.endswith(":"):
            target = target[:-1]
        elif next(words, None) != ":":
            raise NoColonError(deps_file)

        filenames: List[str] = []
        for word in words:
            word = word.removesuffix("\\")
            if not word:
                continue
            if word.endswith(":"):
                raise MultipleTargetsError(deps_file, word)
            filenames.append(word)
        return target, filenames


class IncludeTraceCompiler:
    """
    Compiler whose dependencies are scraped from ``/showIncludes`` output.

    The dependency file written holds the object file path on its first line
    and one included file per following line.
    """

    def __init__(
        self,
        command: CommandLike = "cl",
        trace_prefix: Optional[str] = SHOW_INCLUDES_PREFIX,
        process_manager: Optional[ProcessManager] = None,
    ) -> None:
        self.command = _command_words(command)
        if not self.command:
            raise ValueError("empty compiler command")
        self.trace_prefix = trace_prefix
        self.process_manager = process_manager or ProcessManager()

    def name(self) -> str:
        return shlex.join(self.command)

    def _require_trace_format(self) -> str:
        if self.trace_prefix is None:
            raise ProtocolNotImplementedError(
                f"{self.name()}: include trace format not implemented",
                compiler=self.name(),
            )
        return self.trace_prefix

    def compile_command(
        self, source: str, object_file: str, options: Sequence[str]
    ) -> List[str]:
        return [
            *self.command, *options,
            "/nologo", "/showIncludes", "/c", source, f"/Fo{object_file}",
        ]

    async def _scrape(
        self,
        stream: asyncio.StreamReader,
        deps: Any,
        stderr: Any,
        prefix: str,
        source_name: str,
    ) -> None:
        # The stream is drained even after a write failure, which is raised
        # once it ends.
        error: Optional[OSError] = None
        while True:
            data = await stream.readline()
            if not data:
                break
            line = data.decode("utf-8", errors="replace").rstrip("\r\n")
            if line.startswith(prefix):
                if error is None:
                    try:
                        await deps.write(line[len(prefix):].strip() + "\n")
                    except OSError as e:
                        error = e
            elif line != source_name:
                stderr.write(line + "\n")
        if error is not None:
            raise error

    async def compile(
        self,
        source: str,
        object_file: str,
        deps_file: str,
        options: Sequence[str],
        stderr: Any,
    ) -> None:
        prefix = self._require_trace_format()
        command = self.compile_command(source, object_file, options)

        try:
            async with aiofiles.open(deps_file, "w", encoding="utf-8") as deps:
                await deps.write(object_file + "\n")
                process = await self.process_manager.start(
                    command, stdout=asyncio.subprocess.PIPE, stderr=stderr
                )
                assert process.stdout is not None
                scraped, return_code = await asyncio.gather(
                    self._scrape(
                        process.stdout, deps, stderr, prefix, os.path.basename(source)
                    ),
                    process.wait(),
                    return_exceptions=True,
                )
            if isinstance(return_code, BaseException):
                raise return_code
            if return_code != 0:
                raise CommandError(
                    f"{command[0]}: exit status {return_code}",
                    command=command,
                    return_code=return_code,
                    error_code="COMMAND_FAILED",
                )
            if isinstance(scraped, BaseException):
                raise scraped
        except BaseException:
            self._remove_partial(deps_file)
            raise

    @staticmethod
    def _remove_partial(deps_file: str) -> None:
        try:
            os.remove(deps_file)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"failed to remove partial dependency file {deps_file}: {e}")

    def read_dependencies(self, deps_file: str) -> Tuple[str, List[str]]:
        """
        Read a scraped dependency file.

        Raises:
            ProtocolNotImplementedError: If the trace format is unknown
            OSError: If the file cannot be read (FileNotFoundError if absent)
            UnexpectedEOFError: If the file is empty
        """
        self._require_trace_format()
        with open(deps_file, "r", encoding="utf-8", errors="replace") as f:
            lines = f.read().splitlines()
        if not lines:
            raise UnexpectedEOFError(deps_file)
        return lines[0], [line for line in lines[1:] if line.strip()]


def get_compiler(
    name: CommandLike, process_manager: Optional[ProcessManager] = None
) -> DependencyProtocol:
    """
    Return the dependency protocol for a toolchain command.

    The family is chosen from the basename of the command's last word so
    wrappers such as ``ccache gcc`` and full paths select correctly.

    Raises:
        UnsupportedCompilerError: If the toolchain family is not known
    """
    words = _command_words(name)
    if not words:
        raise UnsupportedCompilerError(str(name))
    base = os.path.basename(words[-1].replace("\\", "/"))
    lowered = base.lower()
    if lowered.endswith(".exe"):
        lowered = lowered[: -len(".exe")]

    if lowered in INCLUDE_TRACE_NAMES:
        logger.debug(f"{base}: include-trace dependency protocol")
        return IncludeTraceCompiler(words, INCLUDE_TRACE_NAMES[lowered], process_manager)
    if lowered in GCC_STYLE_NAMES or any(s in lowered for s in GCC_STYLE_SUBSTRINGS):
        logger.debug(f"{base}: make-style dependency protocol")
        return GccStyleCompiler(words, process_manager)
    raise UnsupportedCompilerError(" ".join(words))
