#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Host platform conventions: file suffixes, standard library directories and
the commands used to create static libraries, shared libraries and plugins.
"""

from __future__ import annotations

import os
import platform as host
import sys
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from loguru import logger

from .stat_cache import StatCache


class PlatformKind(StrEnum):
    """Object/library format family of a platform."""

    ELF = "elf"
    MACOS = "macos"
    WINDOWS = "windows"


_LIB64 = (
    "/usr/local/lib",
    "/usr/lib",
    "/usr/lib64",
    "/usr/lib/x86_64-linux-gnu",
    "/lib/x86_64-linux-gnu",
    "/lib64",
    "/lib",
)

_LIB32 = (
    "/usr/local/lib",
    "/usr/lib32",
    "/usr/lib",
    "/lib",
)


@dataclass(frozen=True)
class Platform:
    """Platform-specific names and tool invocations."""

    name: str
    kind: PlatformKind
    default_cc: str = "cc"
    default_cxx: str = "c++"
    object_suffix: str = ".o"
    static_lib_prefix: str = "lib"
    static_lib_suffix: str = ".a"
    dynamic_lib_prefix: str = "lib"
    dynamic_lib_suffix: str = ".so"
    plugin_prefix: str = ""
    plugin_suffix: str = ".so"
    default_executable: str = "a.out"
    library_paths: Tuple[str, ...] = field(default_factory=tuple)

    def static_library(self, name: str) -> str:
        return f"{self.static_lib_prefix}{name}{self.static_lib_suffix}"

    def dynamic_library(self, name: str) -> str:
        return f"{self.dynamic_lib_prefix}{name}{self.dynamic_lib_suffix}"

    def plugin_file(self, name: str) -> str:
        return f"{self.plugin_prefix}{name}{self.plugin_suffix}"

    def is_library_file(self, path: str) -> bool:
        ext = os.path.splitext(path)[1]
        return ext in (self.static_lib_suffix, self.dynamic_lib_suffix)

    def archive_command(self, target: str, objects: Sequence[str]) -> List[str]:
        """Command creating a static library from object files."""
        if self.kind == PlatformKind.WINDOWS:
            return ["lib", f"/OUT:{target}", *objects]
        if self.kind == PlatformKind.MACOS:
            return ["libtool", "-static", "-o", target, *objects]
        return ["ar", "rc", target, *objects]

    def dll_command(
        self,
        compiler: Sequence[str],
        target: str,
        objects: Sequence[str],
        libraries: Sequence[str],
        options: Sequence[str],
        frameworks: Sequence[str] = (),
    ) -> List[str]:
        """Command creating a shared/dynamic library."""
        if self.kind == PlatformKind.WINDOWS:
            return ["link", "/DLL", f"/OUT:{target}", *objects, *options, *libraries]
        if self.kind == PlatformKind.MACOS:
            return [
                "libtool", "-dynamic", "-o", target,
                *options, *objects, *libraries, *frameworks,
            ]
        return [*compiler, "-shared", *options, "-o", target, *objects, *libraries]

    def plugin_command(
        self,
        compiler: Sequence[str],
        target: str,
        objects: Sequence[str],
        libraries: Sequence[str],
        options: Sequence[str],
        frameworks: Sequence[str] = (),
    ) -> List[str]:
        """Command creating a loadable plugin."""
        if self.kind == PlatformKind.MACOS:
            return [
                *compiler, "-bundle", *options, "-o", target,
                *objects, *libraries, *frameworks,
            ]
        return self.dll_command(compiler, target, objects, libraries, options, frameworks)


_ARCH_NAMES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
}


def host_arch() -> str:
    """Return the host CPU architecture, e.g. ``amd64`` or ``arm64``."""
    machine = host.machine().lower()
    return _ARCH_NAMES.get(machine, machine)


def _elf_library_paths() -> Tuple[str, ...]:
    return _LIB64 if host_arch() == "amd64" else _LIB32


def linux_platform() -> Platform:
    return Platform(
        name="linux", kind=PlatformKind.ELF, library_paths=_elf_library_paths()
    )


def freebsd_platform() -> Platform:
    return Platform(
        name="freebsd", kind=PlatformKind.ELF, library_paths=("/usr/lib", "/lib")
    )


def macos_platform() -> Platform:
    return Platform(
        name="darwin",
        kind=PlatformKind.MACOS,
        dynamic_lib_suffix=".dylib",
        plugin_suffix=".bundle",
        library_paths=("/usr/lib",),
    )


def windows_platform() -> Platform:
    lib = os.environ.get("LIB", "")
    return Platform(
        name="windows",
        kind=PlatformKind.WINDOWS,
        default_cc="cl",
        default_cxx="cl",
        object_suffix=".obj",
        static_lib_prefix="",
        static_lib_suffix=".lib",
        dynamic_lib_prefix="",
        dynamic_lib_suffix=".dll",
        plugin_suffix=".dll",
        default_executable="program.exe",
        library_paths=tuple(p for p in lib.split(os.pathsep) if p),
    )


def current_platform() -> Platform:
    """Return the Platform for the running host."""
    if sys.platform.startswith("win"):
        return windows_platform()
    if sys.platform == "darwin":
        return macos_platform()
    if sys.platform.startswith("freebsd"):
        return freebsd_platform()
    return linux_platform()


def _find_on_path(
    paths: Sequence[str], filename: str, stat_cache: StatCache
) -> Optional[Path]:
    for directory in paths:
        candidate = Path(directory) / filename
        try:
            stat_cache.stat(candidate)
        except FileNotFoundError:
            continue
        return candidate
    return None


def find_library(
    paths: Sequence[str],
    name: str,
    platform: Platform,
    stat_cache: Optional[StatCache] = None,
) -> Optional[Path]:
    """
    Find a library on a search path, preferring a dynamic library.

    Args:
        paths: Directories to search, in order
        name: Library name without prefix or suffix (``m`` for ``-lm``)
        platform: Platform giving library naming conventions
        stat_cache: Cache used for the lookups

    Returns:
        The library path, or None if neither form was found

    Raises:
        OSError: If a candidate exists but cannot be stat'd
    """
    cache = stat_cache or StatCache()
    found = _find_on_path(paths, platform.dynamic_library(name), cache)
    if found is None:
        found = _find_on_path(paths, platform.static_library(name), cache)
    logger.debug(f"LIB: {name!r} -> {found}")
    return found


def endash(values: Sequence[str], platform: Platform) -> List[str]:
    """
    Turn library paths in the platform's standard directories back into
    ``-lname`` form, leaving every other value unchanged.
    """
    standard = set(platform.library_paths)
    dashed: List[str] = []
    for value in values:
        directory, base = os.path.split(value)
        if directory not in standard:
            dashed.append(value)
            continue
        stem = base.removesuffix(platform.static_lib_suffix)
        if stem == base:
            stem = base.removesuffix(platform.dynamic_lib_suffix)
        name = stem.removeprefix(platform.static_lib_prefix)
        if name == stem:
            name = stem.removeprefix(platform.dynamic_lib_prefix)
        dashed.append(f"-l{name}")
    return dashed
