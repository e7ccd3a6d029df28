import asyncio
import io
import os
import sys

import pytest

from . import output_mux
from .output_mux import OutputMux


def assert_contiguous(lines, unit_count, lines_per_unit):
    """Every unit's lines appear as one run, in the order written."""
    for unit in range(unit_count):
        expected = [f"unit{unit} line{i}" for i in range(lines_per_unit)]
        start = lines.index(expected[0])
        assert lines[start : start + lines_per_unit] == expected


@pytest.mark.asyncio
async def test_blocks_from_concurrent_writers_stay_contiguous():
    workers, units, lines_per_unit = 3, 10, 5
    stream = io.StringIO()
    slots = asyncio.Semaphore(workers)

    async def compile_unit(mux, unit):
        async with slots:
            with mux.new_writer() as writer:
                for i in range(lines_per_unit):
                    writer.write(f"unit{unit} line{i}\n")
                    await asyncio.sleep(0)

    async with OutputMux(stream) as mux:
        await asyncio.gather(*(compile_unit(mux, unit) for unit in range(units)))

    lines = stream.getvalue().splitlines()
    assert len(lines) == units * lines_per_unit
    assert mux.blocks_written == units
    assert_contiguous(lines, units, lines_per_unit)


@pytest.mark.skipif(sys.platform == "win32", reason="uses sh")
@pytest.mark.asyncio
async def test_subprocess_output_is_collected_per_writer():
    units, lines_per_unit = 6, 4
    stream = io.StringIO()

    async def run_unit(mux, unit):
        script = "; ".join(
            f"echo unit{unit} line{i} >&2; sleep 0.01" for i in range(lines_per_unit)
        )
        with mux.new_writer() as writer:
            process = await asyncio.create_subprocess_exec(
                "sh", "-c", script, stdin=asyncio.subprocess.DEVNULL, stderr=writer
            )
            await process.wait()

    async with OutputMux(stream) as mux:
        await asyncio.gather(*(run_unit(mux, unit) for unit in range(units)))

    lines = stream.getvalue().splitlines()
    assert len(lines) == units * lines_per_unit
    assert_contiguous(lines, units, lines_per_unit)


@pytest.mark.asyncio
async def test_blocks_appear_in_completion_order():
    stream = io.StringIO()
    async with OutputMux(stream) as mux:
        first = mux.new_writer()
        second = mux.new_writer()
        first.write("first\n")
        second.write("second\n")
        second.close()
        await asyncio.sleep(0.1)
        first.close()

    assert stream.getvalue() == "second\nfirst\n"


@pytest.mark.asyncio
async def test_partial_lines_are_joined():
    stream = io.StringIO()
    async with OutputMux(stream) as mux:
        with mux.new_writer() as writer:
            writer.write("abc")
            writer.write("def\nghi")

    assert stream.getvalue() == "abcdef\nghi\n"


@pytest.mark.asyncio
async def test_stop_flushes_unclosed_writers():
    stream = io.StringIO()
    mux = OutputMux(stream)
    mux.start()
    writer = mux.new_writer()
    writer.write("still open\n")

    await mux.stop()

    assert writer.closed
    assert stream.getvalue() == "still open\n"
    assert not mux.running


@pytest.mark.asyncio
async def test_silent_writer_produces_no_block():
    stream = io.StringIO()
    async with OutputMux(stream) as mux:
        mux.new_writer().close()

    assert stream.getvalue() == ""
    assert mux.blocks_written == 0


@pytest.mark.asyncio
async def test_writer_requires_running_mux():
    with pytest.raises(RuntimeError):
        OutputMux(io.StringIO()).new_writer()


@pytest.mark.asyncio
async def test_closed_writer_rejects_writes():
    async with OutputMux(io.StringIO()) as mux:
        writer = mux.new_writer()
        writer.close()
        with pytest.raises(ValueError):
            writer.write("late\n")
        with pytest.raises(ValueError):
            writer.fileno()


@pytest.mark.skipif(sys.platform == "win32", reason="reads a pipe")
@pytest.mark.asyncio
async def test_over_long_line_is_dropped_whole(monkeypatch):
    monkeypatch.setattr(output_mux, "MAX_LINE_LENGTH", 16)
    stream = io.StringIO()

    async with OutputMux(stream) as mux:
        with mux.new_writer() as writer:
            os.write(writer.fileno(), b"before\n" + b"x" * 100 + b"\nafter\n")

    assert stream.getvalue().splitlines() == ["before", "after"]
