#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Output multiplexer keeping concurrent subprocess output readable.

Every writer handed out by ``OutputMux.new_writer`` is the write side of an
OS pipe. A reader task per writer transfers complete lines to a central
collector which holds them until the writer's stream ends, then writes the
whole block in one go. Blocks from different writers therefore never
interleave and appear in the order their writers finished.

There is no limit on how much output is buffered per writer.
"""

from __future__ import annotations

import asyncio
import itertools
import os
import sys
from typing import Dict, List, Optional, TextIO, Tuple

from loguru import logger

# Lines longer than this are dropped by the reader.
MAX_LINE_LENGTH = 1 << 20

# (writer id, line) where a line of None marks the end of the writer's stream.
_Message = Tuple[int, Optional[str]]
_STOP = object()


class MuxWriter:
    """
    A writable handle feeding an ``OutputMux``.

    Pass it as a subprocess's ``stderr`` (it has a ``fileno``) or ``write``
    text to it directly. Nothing reaches the output until the handle is
    closed and every process holding the pipe has exited.
    """

    def __init__(self, mux: OutputMux, writer_id: int) -> None:
        self._mux = mux
        self.writer_id = writer_id
        self._read_fd, self._write_fd = os.pipe()
        self._pending = ""
        self.closed = False

    def fileno(self) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed MuxWriter")
        return self._write_fd

    def write(self, text: str) -> int:
        """Queue complete lines of text; a trailing partial line is held back."""
        if self.closed:
            raise ValueError("write to closed MuxWriter")
        *lines, self._pending = (self._pending + text).split("\n")
        for line in lines:
            self._mux._send((self.writer_id, line.rstrip("\r")))
        return len(text)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        """Close the handle; its block is emitted once the pipe drains."""
        if self.closed:
            return
        self.closed = True
        if self._pending:
            self._mux._send((self.writer_id, self._pending))
            self._pending = ""
        os.close(self._write_fd)

    def __enter__(self) -> MuxWriter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class OutputMux:
    """
    Collects line-oriented output from many writers and emits each writer's
    output as one uninterrupted block.

    Must be started and used from within a running event loop, normally as
    ``async with OutputMux(sys.stderr) as mux:``.
    """

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self.stream = stream if stream is not None else sys.stderr
        self._queue: Optional[asyncio.Queue] = None
        self._collector: Optional[asyncio.Task] = None
        self._buffers: Dict[int, List[str]] = {}
        self._writers: Dict[int, MuxWriter] = {}
        self._readers: Dict[int, asyncio.Task] = {}
        self._ids = itertools.count(1)
        self.blocks_written = 0

    @property
    def running(self) -> bool:
        return self._collector is not None

    def start(self) -> None:
        if self._collector is not None:
            raise RuntimeError("OutputMux is already running")
        self._queue = asyncio.Queue()
        self._collector = asyncio.get_running_loop().create_task(
            self.run(), name="output-mux"
        )

    async def __aenter__(self) -> OutputMux:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def new_writer(self) -> MuxWriter:
        """Return a new writer backed by its own pipe and reader task."""
        if self._collector is None:
            raise RuntimeError("OutputMux is not running")
        writer = MuxWriter(self, next(self._ids))
        self._writers[writer.writer_id] = writer
        self._readers[writer.writer_id] = asyncio.get_running_loop().create_task(
            self._read(writer.writer_id, writer._read_fd),
            name=f"output-mux-reader-{writer.writer_id}",
        )
        return writer

    def _send(self, message: _Message | object) -> None:
        assert self._queue is not None
        self._queue.put_nowait(message)

    async def _read(self, writer_id: int, read_fd: int) -> None:
        loop = asyncio.get_running_loop()
        pipe = os.fdopen(read_fd, "rb", buffering=0)
        reader = asyncio.StreamReader(limit=MAX_LINE_LENGTH)
        try:
            transport, _ = await loop.connect_read_pipe(
                lambda: asyncio.StreamReaderProtocol(reader), pipe
            )
        except BaseException:
            pipe.close()
            raise
        discarding = False
        try:
            while True:
                try:
                    data = await reader.readuntil(b"\n")
                except asyncio.IncompleteReadError as e:
                    data = e.partial
                except asyncio.LimitOverrunError as e:
                    # Skip what is buffered; the rest of the line follows.
                    await reader.readexactly(e.consumed)
                    if not discarding:
                        logger.warning(
                            f"output line longer than {MAX_LINE_LENGTH} bytes dropped"
                        )
                    discarding = True
                    continue
                if not data:
                    break
                if discarding:
                    discarding = False
                    continue
                line = data.decode("utf-8", errors="replace").rstrip("\r\n")
                self._send((writer_id, line))
        finally:
            transport.close()
        self._send((writer_id, None))

    async def run(self) -> None:
        """Collector loop; returns after a stop request has flushed everything."""
        assert self._queue is not None
        while True:
            message = await self._queue.get()
            if message is _STOP:
                self._flush_all()
                return
            writer_id, line = message
            if line is None:
                self._flush(writer_id)
                self._readers.pop(writer_id, None)
                self._writers.pop(writer_id, None)
            else:
                self._buffers.setdefault(writer_id, []).append(line)

    def _flush(self, writer_id: int) -> None:
        lines = self._buffers.pop(writer_id, None)
        if not lines:
            return
        self.stream.write("\n".join(lines) + "\n")
        self.stream.flush()
        self.blocks_written += 1

    def _flush_all(self) -> None:
        for writer_id in list(self._buffers):
            self._flush(writer_id)

    async def stop(self) -> None:
        """
        Stop the multiplexer, flushing any output still buffered.

        Readers of closed writers are allowed to drain their pipes. Writers
        that were never closed are closed and their readers cancelled, and
        whatever they produced so far is flushed.
        """
        if self._collector is None:
            return

        draining = []
        for writer_id, task in list(self._readers.items()):
            writer = self._writers.get(writer_id)
            if writer is not None and not writer.closed:
                writer.close()
                task.cancel()
            draining.append(task)
        await asyncio.gather(*draining, return_exceptions=True)

        self._send(_STOP)
        await self._collector
        self._collector = None
        self._readers.clear()
        self._writers.clear()
