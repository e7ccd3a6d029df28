#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Input file classification and generated file naming.
"""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from loguru import logger

from .platform_info import Platform, current_platform, host_arch

DEFAULT_DCC_DIR = ".dcc"
DEFAULT_DEPS_DIR = ".dcc.d"

CPLUSPLUS_EXTENSIONS = frozenset(
    {".cc", ".cpp", ".cxx", ".c++", ".hh", ".hpp", ".hxx", ".h++"}
)
SOURCE_EXTENSIONS = frozenset({".c", ".cc", ".cpp", ".cxx", ".c++", ".m", ".mm"})
HEADER_EXTENSIONS = frozenset({".h", ".hh", ".hpp", ".hxx", ".h++"})


def _extension(path: str) -> str:
    return os.path.splitext(path)[1].lower()


def is_cplusplus_file(path: str) -> bool:
    return _extension(path) in CPLUSPLUS_EXTENSIONS


def is_source_file(path: str) -> bool:
    """True for C, C++ and Objective-C source files."""
    return _extension(path) in SOURCE_EXTENSIONS


def is_header_file(path: str) -> bool:
    return _extension(path) in HEADER_EXTENSIONS


def file_will_be_compiled(path: str) -> bool:
    """Sources and headers are compiled; headers become precompiled headers."""
    return is_source_file(path) or is_header_file(path)


def object_filename(
    path: str, objdir: str = ".", platform: Optional[Platform] = None
) -> str:
    """
    Return the object file name for a source file.

    Leading ``..`` components are dropped so objects for sources outside the
    current directory still land under ``objdir``. Headers map to ``.gch``
    files and anything else gets ``.o`` appended to its full name.
    """
    platform = platform or current_platform()
    dirname, basename = os.path.split(path)
    parts = dirname.replace("\\", "/").split("/") if dirname else []
    first = 0
    while first < len(parts) and parts[first] == "..":
        first += 1
    if first:
        rest = parts[first:]
        path = os.path.join(*rest, basename) if rest else basename

    if is_source_file(path):
        stem = os.path.splitext(path)[0]
        return os.path.normpath(os.path.join(objdir, stem + platform.object_suffix))
    if is_header_file(path):
        return os.path.normpath(os.path.join(objdir, path + ".gch"))
    return os.path.normpath(os.path.join(objdir, path + ".o"))


def deps_filename(object_file: str, deps_dir: str = DEFAULT_DEPS_DIR) -> str:
    """Return the dependency record path for an object file."""
    dirname, basename = os.path.split(object_file)
    return os.path.join(dirname, deps_dir, basename) + ".d"


@dataclass
class InputFiles:
    """Command line inputs split by what will be done with them."""

    inputs: List[str] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)
    libraries: List[str] = field(default_factory=list)
    other_files: List[str] = field(default_factory=list)

    def object_files(
        self, objdir: str = ".", platform: Optional[Platform] = None
    ) -> List[str]:
        """
        Return the objects compiled from the sources, in command line order.
        Headers are skipped since a precompiled header is not a linker input.
        """
        return [
            object_filename(path, objdir, platform)
            for path in self.sources
            if is_source_file(path)
        ]


def classify_inputs(
    paths: List[str], platform: Optional[Platform] = None
) -> InputFiles:
    """Sort input file names into sources, libraries and other files."""
    platform = platform or current_platform()
    files = InputFiles()
    for path in paths:
        files.inputs.append(path)
        if file_will_be_compiled(path):
            files.sources.append(path)
        elif platform.is_library_file(path):
            files.libraries.append(path)
        else:
            files.other_files.append(path)
    return files


def find_file_upwards(
    filename: str,
    start: Optional[os.PathLike | str] = None,
    dcc_dir: str = DEFAULT_DCC_DIR,
    platform: Optional[Platform] = None,
) -> Optional[Path]:
    """
    Search for a file from a directory towards the filesystem root.

    Each directory is tried before its ``dcc_dir`` subdirectory. Within
    each, ``NAME.<os>_<arch>`` is preferred to ``NAME.<os>``, which is
    preferred to plain ``NAME``.

    Raises:
        OSError: If a candidate cannot be examined for a reason other
            than its absence
    """
    platform = platform or current_platform()
    names = (
        f"{filename}.{platform.name}_{host_arch()}",
        f"{filename}.{platform.name}",
        filename,
    )
    directory = Path(start or os.getcwd()).resolve()
    for candidate_dir in (directory, *directory.parents):
        for search_dir in (candidate_dir, candidate_dir / dcc_dir):
            for name in names:
                candidate = search_dir / name
                try:
                    info = candidate.stat()
                except (FileNotFoundError, NotADirectoryError):
                    continue
                if stat.S_ISREG(info.st_mode):
                    logger.debug(f"FIND: {filename!r} -> {candidate}")
                    return candidate
    logger.debug(f"FIND: {filename!r} not found from {directory}")
    return None
