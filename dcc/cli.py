#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Command-line interface for dcc.
"""
import argparse
import os
import sys
import time
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

from loguru import logger
from pydantic import ValidationError

from . import __version__
from .build_manager import COMPILE_COMMANDS_FILENAME, BuildManager
from .compiler import get_compiler
from .config import EngineConfig
from .errors import ConfigurationError, DccError
from .files import classify_inputs, find_file_upwards, is_cplusplus_file
from .linker import Linker, resolve_libraries
from .logging_config import setup_logging
from .options import Options, most_recent_mod_time, read_options_file
from .platform_info import Platform, current_platform
from .stat_cache import StatCache
from .utils import ProcessManager, default_jobs, getenv

EXE, LIB, DLL, PLUGIN, COMPILE_ONLY = "exe", "lib", "dll", "plugin", "compile"


@dataclass
class BuildInputs:
    """Everything gathered from options files and the command line."""

    compiler_command: Options = field(default_factory=Options)
    compiler_options: Options = field(default_factory=Options)
    linker_options: Options = field(default_factory=Options)
    libraries: Options = field(default_factory=Options)
    library_dirs: List[str] = field(default_factory=list)
    frameworks: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)
    dasho: Optional[str] = None
    link_options_from_compiler: bool = False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dcc",
        description="Dependency-driven C/C++ compiler front end",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
        epilog="""
Unrecognised options are passed to the compiler and anything after "--" is
passed to the compiler unchanged.

Examples:
  # Compile and link a program
  dcc --exe hello hello.c util.c

  # Compile only, into an object directory, eight at a time
  dcc -c -j8 --objdir build src/*.cpp

  # Make a static library
  dcc --lib libutil.a util.c -- -O2
""",
    )

    mode_group = parser.add_argument_group("Output")
    mode = mode_group.add_mutually_exclusive_group()
    mode.add_argument("--exe", metavar="PATH", help="Link an executable")
    mode.add_argument("--lib", metavar="PATH", help="Create a static library")
    mode.add_argument("--dll", metavar="PATH", help="Create a shared library")
    mode.add_argument("--plugin", metavar="PATH", help="Create a loadable plugin")
    mode.add_argument(
        "-c", dest="compile_only", action="store_true", help="Compile only, do not link"
    )
    mode_group.add_argument(
        "-o", dest="output", metavar="PATH",
        help="Output file; with -c the object file directory",
    )
    mode_group.add_argument("--objdir", help="Directory for object files")

    build_group = parser.add_argument_group("Build options")
    build_group.add_argument(
        "-j", dest="jobs", type=int, nargs="?", const=default_jobs(), metavar="N",
        help="Number of concurrent compilations",
    )
    build_group.add_argument(
        "--force", action="store_true", help="Rebuild everything, ignoring dependencies"
    )
    build_group.add_argument("--compiler", help="Compiler command to use")
    build_group.add_argument(
        "--cpp", action="store_true", help="Compile as C++ even without C++ sources"
    )
    build_group.add_argument("--config", help="JSON file with engine settings")
    build_group.add_argument(
        "--write-compile-commands", action="store_true",
        help=f"Write {COMPILE_COMMANDS_FILENAME} to the object directory",
    )
    build_group.add_argument(
        "--append-compile-commands", action="store_true",
        help=f"Append to {COMPILE_COMMANDS_FILENAME} in the object directory",
    )

    output_group = parser.add_argument_group("Messages")
    output_group.add_argument(
        "--quiet", action="store_true", help="Disable non-error messages"
    )
    output_group.add_argument(
        "--verbose", action="store_true", help="Show full command lines"
    )
    output_group.add_argument("--debug", action="store_true", help="Enable debug output")
    output_group.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    return parser


def split_passthrough(argv: List[str]) -> Tuple[List[str], List[str]]:
    """Split arguments at the first "--"."""
    if "--" in argv:
        index = argv.index("--")
        return argv[:index], argv[index + 1:]
    return argv, []


def _read_if_found(name: str, filter=None, into: Optional[Options] = None) -> Optional[Options]:
    path = find_file_upwards(name)
    if path is None:
        return None
    return read_options_file(path, filter=filter, into=into)


def _option_value(option: str, words: Iterator[str]) -> str:
    value = next(words, None)
    if value is None:
        raise DccError(f"{option}: name required", error_code="INVALID_OPTIONS")
    return value


def gather_inputs(
    args: argparse.Namespace, extras: List[str], passthrough: List[str], platform: Platform
) -> BuildInputs:
    """
    Read the options files and sort the remaining arguments into input
    files, compiler options, libraries and library directories.
    """
    inputs = BuildInputs(library_dirs=list(platform.library_paths))
    cplusplus = args.cpp or any(
        not a.startswith("-") and is_cplusplus_file(a) for a in extras
    )

    if args.compiler:
        inputs.compiler_command.values = args.compiler.split()
    else:
        name = "CXX" if cplusplus else "CC"
        default = platform.default_cxx if cplusplus else platform.default_cc
        if _read_if_found(getenv(f"{name}FILE", name), into=inputs.compiler_command) is None:
            inputs.compiler_command.values = getenv(name, default).split()

    flags_file = getenv("CXXFLAGSFILE", "CXXFLAGS") if cplusplus else getenv("CFLAGSFILE", "CFLAGS")
    _read_if_found(flags_file, into=inputs.compiler_options)
    try:
        inputs.dasho = inputs.compiler_options.remove_option_with_value("-o")
    except ValueError as e:
        raise DccError(
            f"invalid -o option in compiler options file {flags_file!r}",
            error_code="INVALID_OPTIONS",
        ) from e
    inputs.compiler_options.set_mod_time(
        most_recent_mod_time(inputs.compiler_options, inputs.compiler_command)
    )

    def collect_library_dir(word: str) -> str:
        if word.startswith("-L"):
            inputs.library_dirs.append(word[2:])
        return word

    found = _read_if_found(
        getenv("LDFLAGSFILE", "LDFLAGS"), filter=collect_library_dir, into=inputs.linker_options
    )
    inputs.link_options_from_compiler = found is None

    libs_file = _read_if_found(getenv("LIBSFILE", "LIBS"))
    if libs_file is not None:
        inputs.libraries.mtime_ns = libs_file.mtime_ns
        words = iter(libs_file.values)
        for word in words:
            if word.startswith("-L"):
                inputs.library_dirs.append(word[2:])
            elif word == "-framework":
                inputs.frameworks.extend([word, _option_value(word, words)])
            else:
                inputs.libraries.append(word)

    command_line_libs: List[str] = []
    command_line_options: List[str] = []
    words = iter(extras)
    for word in words:
        if not word.startswith("-"):
            inputs.files.append(word)
        elif word.startswith("-L"):
            inputs.linker_options.append(word)
            inputs.linker_options.set_mod_time(time.time_ns())
            inputs.library_dirs.append(word[2:])
        elif word.startswith("-l"):
            command_line_libs.append(word)
        elif word == "-framework":
            inputs.libraries.set_mod_time(time.time_ns())
            inputs.frameworks.extend([word, _option_value(word, words)])
        else:
            command_line_options.append(word)
    command_line_options.extend(passthrough)

    inputs.libraries.values = command_line_libs + inputs.libraries.values
    if command_line_options:
        # Options given on the command line have no file to date them.
        inputs.compiler_options.values.extend(command_line_options)
        inputs.compiler_options.set_mod_time(time.time_ns())
    if args.output:
        inputs.dasho = args.output
    return inputs


def make_config(args: argparse.Namespace) -> EngineConfig:
    config = EngineConfig.load(args.config) if args.config else EngineConfig.from_env()
    try:
        if args.jobs is not None:
            config.jobs = args.jobs
        if args.objdir:
            config.objdir = args.objdir
    except ValidationError as e:
        raise ConfigurationError(f"invalid command line setting: {e}") from e
    if args.force:
        config.ignore_dependencies = True
    config.quiet = config.quiet or args.quiet
    config.verbose = config.verbose or args.verbose
    config.debug = config.debug or args.debug
    return config


def run(args: argparse.Namespace, extras: List[str], passthrough: List[str]) -> int:
    """Compile, then link or archive, as the arguments request."""
    config = make_config(args)
    platform = current_platform()
    inputs = gather_inputs(args, extras, passthrough, platform)
    if not inputs.files:
        logger.error("no input files")
        return 1

    mode = COMPILE_ONLY
    output = args.exe or args.lib or args.dll or args.plugin
    for candidate in (EXE, LIB, DLL, PLUGIN):
        if getattr(args, candidate):
            mode = candidate
    if not args.compile_only and output is None:
        mode = EXE

    files = classify_inputs(inputs.files, platform)
    objdir = config.objdir
    if mode == COMPILE_ONLY and inputs.dasho:
        objdir = inputs.dasho
    elif output is None:
        output = inputs.dasho

    stat_cache = StatCache()
    process_manager = ProcessManager()
    compiler = get_compiler(inputs.compiler_command.values, process_manager)
    builder = BuildManager(compiler, config, stat_cache, platform)

    if args.write_compile_commands or args.append_compile_commands:
        builder.write_compile_commands(
            os.path.join(objdir, COMPILE_COMMANDS_FILENAME),
            files.sources,
            inputs.compiler_options,
            objdir,
            append=args.append_compile_commands,
        )

    if not builder.compile_all(files.sources, inputs.compiler_options, objdir):
        return 1

    objects = files.object_files(objdir, platform)
    if mode == COMPILE_ONLY or not (objects or files.other_files or files.libraries):
        return 0

    if mode == EXE and inputs.link_options_from_compiler and inputs.linker_options.empty:
        inputs.linker_options.set_from(inputs.compiler_options)

    libraries = inputs.libraries.model_copy(deep=True)
    libraries.values = resolve_libraries(
        [*files.libraries, *libraries.values], inputs.library_dirs, platform, stat_cache
    )

    linker = Linker(compiler, platform, config, stat_cache, process_manager)
    if mode == LIB:
        linker.make_library(output, objects + files.other_files)
    elif mode == DLL:
        linker.make_dll(
            output, objects, libraries, inputs.linker_options,
            files.other_files, inputs.frameworks,
        )
    elif mode == PLUGIN:
        linker.make_plugin(
            output, objects, libraries, inputs.linker_options,
            files.other_files, inputs.frameworks,
        )
    else:
        linker.link(
            output, objects, libraries, inputs.linker_options,
            files.other_files, inputs.frameworks,
        )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main function for command-line usage.
    """
    argv, passthrough = split_passthrough(list(sys.argv[1:] if argv is None else argv))
    parser = build_parser()
    args, extras = parser.parse_known_args(argv)

    debug = args.debug or bool(os.environ.get("DCCDEBUG"))
    if debug:
        setup_logging("DEBUG")
    elif args.verbose:
        setup_logging("INFO")
    else:
        setup_logging("WARNING")

    try:
        return run(args, extras, passthrough)
    except DccError as e:
        logger.error(str(e))
        return 1
    except OSError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
