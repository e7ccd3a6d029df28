#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
dcc - dependency-driven C/C++ compiler front end

Wraps an existing native toolchain and rebuilds only what changed, without a
separate build description.

Features:
- Per-object dependency records written by the compiler (gcc-style -MD) or
  scraped from its include trace (Microsoft /showIncludes)
- Parallel compilation with a bounded worker pool
- Per-process output blocks that never interleave
- Up-to-date checks for linked executables, static and shared libraries
- compile_commands.json generation
"""

__version__ = "0.1.0"
__license__ = "GPL-3.0-or-later"

from .build_manager import BuildManager, BuildMetrics, CompilationTask
from .compiler import (
    DependencyProtocol,
    GccStyleCompiler,
    IncludeTraceCompiler,
    get_compiler,
)
from .config import EngineConfig
from .errors import (
    CommandError,
    ConfigurationError,
    DccError,
    DependencyFileError,
    MultipleTargetsError,
    NoColonError,
    OptionsFileError,
    ProtocolNotImplementedError,
    UnexpectedEOFError,
    UnsupportedCompilerError,
)
from .linker import Linker, check_link, resolve_libraries
from .options import Options, read_options_file
from .output_mux import MuxWriter, OutputMux
from .stat_cache import StatCache
from .staleness import StaleReason, StalenessEngine, StalenessVerdict

__all__ = [
    "BuildManager",
    "BuildMetrics",
    "CommandError",
    "CompilationTask",
    "ConfigurationError",
    "DccError",
    "DependencyFileError",
    "DependencyProtocol",
    "EngineConfig",
    "GccStyleCompiler",
    "IncludeTraceCompiler",
    "Linker",
    "MultipleTargetsError",
    "MuxWriter",
    "NoColonError",
    "Options",
    "OptionsFileError",
    "OutputMux",
    "ProtocolNotImplementedError",
    "StalenessEngine",
    "StalenessVerdict",
    "StaleReason",
    "StatCache",
    "UnexpectedEOFError",
    "UnsupportedCompilerError",
    "check_link",
    "get_compiler",
    "read_options_file",
    "resolve_libraries",
]
