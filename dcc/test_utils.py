import asyncio
import sys

import pytest

from .errors import CommandError
from . import utils
from .utils import (
    ProcessManager,
    default_jobs,
    getenv,
    getenv_int,
    load_json,
    process_start_lock,
    save_json,
)

needs_posix_shell = pytest.mark.skipif(sys.platform == "win32", reason="uses sh")


@pytest.fixture
def process_manager():
    return ProcessManager()


@needs_posix_shell
@pytest.mark.asyncio
async def test_run_success(process_manager, tmp_path):
    await process_manager.run(["sh", "-c", "echo done > out"], cwd=tmp_path)
    assert (tmp_path / "out").read_text() == "done\n"
    assert process_manager.started == 1


@needs_posix_shell
@pytest.mark.asyncio
async def test_run_nonzero_exit(process_manager):
    with pytest.raises(CommandError) as excinfo:
        await process_manager.run(["sh", "-c", "exit 3"])
    assert excinfo.value.return_code == 3
    assert excinfo.value.error_code == "COMMAND_FAILED"
    assert excinfo.value.command == ["sh", "-c", "exit 3"]


@pytest.mark.asyncio
async def test_run_missing_program(process_manager, tmp_path):
    with pytest.raises(CommandError) as excinfo:
        await process_manager.run([str(tmp_path / "missing")])
    assert excinfo.value.error_code == "LAUNCH_FAILED"
    assert process_manager.started == 0


@needs_posix_shell
@pytest.mark.asyncio
async def test_stdin_is_null(process_manager):
    process = await process_manager.start(
        ["sh", "-c", "cat; echo end"], stdout=asyncio.subprocess.PIPE
    )
    output, _ = await process.communicate()
    assert output == b"end\n"


@needs_posix_shell
def test_manager_outlives_event_loop(process_manager):
    asyncio.run(process_manager.run(["true"]))
    asyncio.run(process_manager.run(["true"]))
    assert process_manager.started == 2


@pytest.mark.asyncio
async def test_start_lock_is_shared_between_managers(monkeypatch):
    active = 0
    overlapped = False

    async def fake_exec(*command, **kwargs):
        nonlocal active, overlapped
        active += 1
        overlapped = overlapped or active > 1
        await asyncio.sleep(0.01)
        active -= 1
        return object()

    monkeypatch.setattr(utils.asyncio, "create_subprocess_exec", fake_exec)
    first, second = ProcessManager(), ProcessManager()

    await asyncio.gather(*(manager.start(["cc"]) for manager in (first, second, first)))

    assert not overlapped
    assert first.started == 2
    assert second.started == 1


def test_start_lock_follows_event_loop():
    async def lock_pair():
        return process_start_lock(), process_start_lock()

    first = asyncio.run(lock_pair())
    second = asyncio.run(lock_pair())
    assert first[0] is first[1]
    assert first[0] is not second[0]


def test_getenv(monkeypatch):
    monkeypatch.setenv("DCC_TEST_VALUE", "")
    assert getenv("DCC_TEST_VALUE", "fallback") == "fallback"
    monkeypatch.setenv("DCC_TEST_VALUE", "set")
    assert getenv("DCC_TEST_VALUE", "fallback") == "set"


def test_getenv_int(monkeypatch):
    monkeypatch.delenv("DCC_TEST_INT", raising=False)
    assert getenv_int("DCC_TEST_INT", 4) == 4
    monkeypatch.setenv("DCC_TEST_INT", "12")
    assert getenv_int("DCC_TEST_INT", 4) == 12
    monkeypatch.setenv("DCC_TEST_INT", "twelve")
    assert getenv_int("DCC_TEST_INT", 4) == 4


def test_default_jobs():
    assert default_jobs() >= 2
    assert default_jobs() % 2 == 0


def test_save_and_load_json(tmp_path):
    path = tmp_path / "nested" / "data.json"
    save_json(path, [{"file": "a.c"}])
    assert load_json(path) == [{"file": "a.c"}]
    assert path.read_text().endswith("\n")
