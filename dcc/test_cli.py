import json
import os
import stat
import sys
from pathlib import Path

import pytest
from loguru import logger

from .cli import build_parser, gather_inputs, main, make_config, split_passthrough
from .errors import ConfigurationError, DccError
from .platform_info import Platform, PlatformKind

BASE_NS = 1_600_000_000 * 10**9

needs_posix_shell = pytest.mark.skipif(
    sys.platform == "win32", reason="fake toolchain is an sh script"
)

# Compiles with -c, links otherwise; every invocation is logged.
FAKE_TOOLCHAIN = r"""#!/bin/sh
echo "$*" >> "$DCC_TEST_LOG"
deps= out= src=
while [ $# -gt 0 ]; do
    case "$1" in
        -MF) deps="$2"; shift ;;
        -o) out="$2"; shift ;;
        -c) src="$2"; shift ;;
    esac
    shift
done
if [ -n "$src" ]; then
    if grep -q FAIL "$src"; then
        echo "$src:1: error: failed" >&2
        exit 1
    fi
    echo object > "$out"
    echo "$out: $src" > "$deps"
else
    echo program > "$out"
fi
"""

ENVIRONMENT = (
    "CC", "CXX", "CCFILE", "CXXFILE", "CFLAGSFILE", "CXXFLAGSFILE", "LDFLAGSFILE",
    "LIBSFILE", "NUMJOBS", "OBJDIR", "DEPSDIR", "DCCDEBUG",
)


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logger.remove()


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    for name in ENVIRONMENT:
        monkeypatch.delenv(name, raising=False)
    project = tmp_path / "project"
    project.mkdir()
    monkeypatch.chdir(project)
    return project


@pytest.fixture
def toolchain(tmp_path, monkeypatch):
    log = tmp_path / "invocations.log"
    monkeypatch.setenv("DCC_TEST_LOG", str(log))
    script = tmp_path / "bin" / "fakecc"
    script.parent.mkdir()
    script.write_text(FAKE_TOOLCHAIN)
    script.chmod(script.stat().st_mode | stat.S_IXUSR)

    def invocations():
        return log.read_text().splitlines() if log.exists() else []

    return str(script), invocations


@pytest.fixture
def platform():
    return Platform(name="test", kind=PlatformKind.ELF)


def parse(argv):
    argv, passthrough = split_passthrough(argv)
    args, extras = build_parser().parse_known_args(argv)
    return args, extras, passthrough


def write_options(name, text, mtime_ns=BASE_NS):
    path = Path(name)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    os.utime(path, ns=(mtime_ns, mtime_ns))


def test_split_passthrough():
    assert split_passthrough(["a.c", "--", "-O2", "--", "x"]) == (["a.c"], ["-O2", "--", "x"])
    assert split_passthrough(["a.c"]) == (["a.c"], [])


def test_parser_modes():
    args, extras, _ = parse(["--exe", "app", "-j4", "a.c", "-O2"])
    assert args.exe == "app"
    assert args.jobs == 4
    assert extras == ["a.c", "-O2"]

    args, _, _ = parse(["-c", "-o", "obj", "a.c"])
    assert args.compile_only
    assert args.output == "obj"

    with pytest.raises(SystemExit):
        parse(["--exe", "app", "--lib", "libx.a"])


def test_gather_inputs_sorts_arguments(workspace, platform):
    args, extras, passthrough = parse(
        ["--compiler", "ccache gcc", "a.c", "-O2", "-lm", "-L/opt/lib",
         "-framework", "Cocoa", "b.cpp", "--", "-g"]
    )

    inputs = gather_inputs(args, extras, passthrough, platform)

    assert inputs.compiler_command.values == ["ccache", "gcc"]
    assert inputs.files == ["a.c", "b.cpp"]
    assert inputs.compiler_options.values == ["-O2", "-g"]
    assert inputs.libraries.values == ["-lm"]
    assert inputs.library_dirs == ["/opt/lib"]
    assert inputs.linker_options.values == ["-L/opt/lib"]
    assert inputs.frameworks == ["-framework", "Cocoa"]
    assert inputs.link_options_from_compiler


def test_gather_inputs_reads_options_files(workspace, platform):
    write_options(".dcc/CC", "gcc-12\n", BASE_NS - 10)
    write_options("CFLAGS", "# release\n-O2 -o build\n", BASE_NS)
    write_options("LDFLAGS", "-L/usr/local/lib -s\n")
    write_options("LIBS", "-L/opt/x -lfoo -framework Foo\n", BASE_NS + 5)
    args, extras, passthrough = parse(["-lbar", "a.c"])

    inputs = gather_inputs(args, extras, passthrough, platform)

    assert inputs.compiler_command.values == ["gcc-12"]
    assert inputs.compiler_options.values == ["-O2"]
    assert inputs.compiler_options.mod_time_ns == BASE_NS
    assert inputs.dasho == "build"
    assert inputs.linker_options.values == ["-L/usr/local/lib", "-s"]
    assert not inputs.link_options_from_compiler
    assert inputs.library_dirs == ["/usr/local/lib", "/opt/x"]
    assert inputs.libraries.values == ["-lbar", "-lfoo"]
    assert inputs.libraries.mod_time_ns == BASE_NS + 5
    assert inputs.frameworks == ["-framework", "Foo"]


def test_cplusplus_sources_select_cxx(workspace, platform, monkeypatch):
    monkeypatch.setenv("CC", "should-not-be-used")
    monkeypatch.setenv("CXX", "clang++ -stdlib=libc++")
    write_options("CXXFLAGS", "-std=c++20\n")
    write_options("CFLAGS", "-std=c99\n")

    inputs = gather_inputs(*parse(["main.cc"]), platform)

    assert inputs.compiler_command.values == ["clang++", "-stdlib=libc++"]
    assert inputs.compiler_options.values == ["-std=c++20"]


def test_command_line_options_are_newer_than_files(workspace, platform):
    write_options("CFLAGS", "-O2\n", BASE_NS)
    inputs = gather_inputs(*parse(["--compiler", "cc", "a.c", "-DNDEBUG"]), platform)
    assert inputs.compiler_options.values == ["-O2", "-DNDEBUG"]
    assert inputs.compiler_options.mod_time_ns > BASE_NS


def test_command_line_library_options_are_newer_than_files(workspace, platform):
    write_options("LDFLAGS", "-s\n", BASE_NS)
    write_options("LIBS", "-lfoo\n", BASE_NS)

    inputs = gather_inputs(
        *parse(["--compiler", "cc", "a.c", "-L/opt/lib", "-framework", "Cocoa"]), platform
    )

    assert inputs.linker_options.values == ["-s", "-L/opt/lib"]
    assert inputs.linker_options.mod_time_ns > BASE_NS
    assert inputs.libraries.mod_time_ns > BASE_NS


def test_library_options_files_keep_their_timestamps(workspace, platform):
    write_options("LDFLAGS", "-s\n", BASE_NS)
    write_options("LIBS", "-lfoo\n", BASE_NS)

    inputs = gather_inputs(*parse(["--compiler", "cc", "a.c", "-lbar"]), platform)

    assert inputs.linker_options.mod_time_ns == BASE_NS
    assert inputs.libraries.mod_time_ns == BASE_NS


def test_output_option_overrides_options_file(workspace, platform):
    write_options("CFLAGS", "-o from-file\n")
    inputs = gather_inputs(*parse(["--compiler", "cc", "-o", "app", "a.c"]), platform)
    assert inputs.dasho == "app"


def test_framework_requires_a_name(workspace, platform):
    with pytest.raises(DccError):
        gather_inputs(*parse(["--compiler", "cc", "a.c", "-framework"]), platform)


def test_dangling_output_option_in_flags_file(workspace, platform):
    write_options("CFLAGS", "-O2 -o\n")
    with pytest.raises(DccError) as excinfo:
        gather_inputs(*parse(["--compiler", "cc", "a.c"]), platform)
    assert excinfo.value.error_code == "INVALID_OPTIONS"


def test_make_config(workspace, monkeypatch):
    monkeypatch.setenv("NUMJOBS", "3")
    args, _, _ = parse(["--force", "--quiet", "--objdir", "build", "a.c"])

    config = make_config(args)

    assert config.jobs == 3
    assert config.objdir == "build"
    assert config.ignore_dependencies
    assert config.quiet


def test_make_config_from_file(workspace):
    Path("dcc.json").write_text(json.dumps({"jobs": 5, "verbose": True}))
    args, _, _ = parse(["--config", "dcc.json", "-j", "2", "a.c"])

    config = make_config(args)

    assert config.jobs == 2
    assert config.verbose


def test_make_config_rejects_bad_job_count(workspace):
    args, _, _ = parse(["-j", "0", "a.c"])
    with pytest.raises(ConfigurationError):
        make_config(args)


def test_no_input_files(workspace):
    assert main(["--compiler", "cc", "--quiet"]) == 1


def test_unsupported_compiler(workspace):
    Path("a.c").write_text("int a;\n")
    assert main(["--compiler", "tcc", "--quiet", "a.c"]) == 1


@needs_posix_shell
def test_build_executable_then_nothing_to_do(workspace, toolchain, capsys):
    compiler, invocations = toolchain
    Path("a.c").write_text("int a;\n")
    Path("b.c").write_text("int b;\n")
    argv = ["--compiler", compiler, "--exe", "app", "--objdir", "obj", "-j2", "a.c", "b.c"]

    assert main(argv) == 0

    assert Path("app").read_text() == "program\n"
    assert sorted(line.split()[-1] for line in invocations()[:2]) == [
        os.path.join("obj", "a.o"), os.path.join("obj", "b.o"),
    ]
    assert invocations()[2] == (
        f"{os.path.join('obj', 'a.o')} {os.path.join('obj', 'b.o')} -o app"
    )
    echoed = capsys.readouterr().out.splitlines()
    assert sorted(echoed) == [f"{compiler} a.c", f"{compiler} b.c"]

    assert main(argv) == 0
    assert len(invocations()) == 3


@needs_posix_shell
def test_compile_failure_skips_link(workspace, toolchain):
    compiler, invocations = toolchain
    Path("good.c").write_text("int a;\n")
    Path("bad.c").write_text("FAIL\n")

    assert main(["--compiler", compiler, "--quiet", "--exe", "app", "good.c", "bad.c"]) == 1

    assert len(invocations()) == 2
    assert Path("good.o").exists()
    assert not Path("app").exists()


@needs_posix_shell
def test_compile_only_into_directory(workspace, toolchain):
    compiler, invocations = toolchain
    Path("a.c").write_text("int a;\n")

    assert main(
        ["--compiler", compiler, "--quiet", "-c", "-o", "out", "--write-compile-commands", "a.c"]
    ) == 0

    assert Path("out/a.o").exists()
    assert len(invocations()) == 1
    (entry,) = json.loads(Path("out/compile_commands.json").read_text())
    assert entry["file"] == "a.c"
    assert entry["command"] == f"{compiler} -o {os.path.join('out', 'a.o')} -c a.c"
