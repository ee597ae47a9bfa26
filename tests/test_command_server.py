from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path
import threading

import pytest

from showcapture.config import SequenceConfig
from showcapture.control import CommandServer, parse_command_inputs
from showcapture.sequence import SequenceRunner


class GatedCapture:
    def __init__(self, gate: threading.Event | None = None) -> None:
        self.gate = gate
        self.calls: list[int] = []

    def __call__(self, input_id: int, folder: Path, timestamp: str) -> Path:
        self.calls.append(input_id)
        if self.gate is not None:
            self.gate.wait(timeout=5)
        path = folder / f"capture_{input_id}.png"
        path.write_bytes(b"png")
        return path


def _runner(tmp_path: Path, capture: GatedCapture, run_timeout: float = 5.0) -> SequenceRunner:
    return SequenceRunner(
        switch_router=lambda input_id, output_id: None,
        capture_still=capture,
        output_dir=tmp_path,
        config=SequenceConfig(settle_seconds=0.0, post_capture_seconds=0.0, run_timeout_seconds=run_timeout),
        now=lambda: datetime(2026, 1, 2, 3, 4, 5),
    )


async def _read_until(reader: asyncio.StreamReader, prefixes: tuple[str, ...]) -> list[str]:
    lines: list[str] = []
    while True:
        raw = await asyncio.wait_for(reader.readline(), timeout=5)
        if not raw:
            return lines
        line = raw.decode("utf-8").rstrip("\n")
        lines.append(line)
        if line.startswith(prefixes):
            return lines


def test_parse_command_inputs() -> None:
    assert parse_command_inputs("1,2,6") == [1, 2, 6]
    assert parse_command_inputs("1,9,x,3") == [1, 3]
    assert parse_command_inputs(" 4 , 5 ") == [4, 5]
    assert parse_command_inputs("0,-1,7") == []
    assert parse_command_inputs("") == []
    assert parse_command_inputs("abc") == []


@pytest.mark.asyncio
async def test_command_streams_progress_and_completes(tmp_path: Path) -> None:
    capture = GatedCapture()
    server = CommandServer(_runner(tmp_path, capture), host="127.0.0.1", port=0)
    await server.start()
    try:
        reader, writer = await asyncio.open_connection("127.0.0.1", server.bound_port)
        writer.write(b"1,9,x,3\n")
        await writer.drain()

        lines = await _read_until(reader, ("COMPLETE:", "ERROR:"))

        assert lines[0] == "[1/2] switching to input 1"
        assert "input 3 captured: capture_3.png" in lines
        assert lines[-1].startswith("COMPLETE: captured 2/2 input(s)")
        assert capture.calls == [1, 3]

        writer.close()
        await writer.wait_closed()
    finally:
        await server.stop()


@pytest.mark.asyncio
@pytest.mark.parametrize("command", [b"abc\n", b"\n", b"0,7\n"])
async def test_command_without_valid_inputs_gets_error_line(tmp_path: Path, command: bytes) -> None:
    capture = GatedCapture()
    server = CommandServer(_runner(tmp_path, capture), host="127.0.0.1", port=0)
    await server.start()
    try:
        reader, writer = await asyncio.open_connection("127.0.0.1", server.bound_port)
        writer.write(command)
        await writer.drain()

        lines = await _read_until(reader, ("ERROR:",))

        assert lines == [f"ERROR: no valid inputs in command {command.decode().strip()!r}"]
        assert capture.calls == []
        assert list(tmp_path.iterdir()) == []

        writer.close()
        await writer.wait_closed()
    finally:
        await server.stop()


@pytest.mark.asyncio
async def test_second_client_is_told_already_running(tmp_path: Path) -> None:
    gate = threading.Event()
    capture = GatedCapture(gate)
    runner = _runner(tmp_path, capture)
    server = CommandServer(runner, host="127.0.0.1", port=0)
    await server.start()
    try:
        reader_a, writer_a = await asyncio.open_connection("127.0.0.1", server.bound_port)
        reader_b, writer_b = await asyncio.open_connection("127.0.0.1", server.bound_port)

        writer_a.write(b"1\n")
        await writer_a.drain()
        for _ in range(200):
            if runner.running:
                break
            await asyncio.sleep(0.01)
        assert runner.running

        writer_b.write(b"2,3\n")
        await writer_b.drain()
        lines_b = await _read_until(reader_b, ("ERROR:",))
        assert lines_b == ["ERROR: sequence already running"]

        gate.set()
        lines_a = await _read_until(reader_a, ("COMPLETE:", "ERROR:"))
        assert lines_a[-1].startswith("COMPLETE:")
        assert capture.calls == [1]
        assert server.client_count == 2

        for w in (writer_a, writer_b):
            w.close()
            await w.wait_closed()
    finally:
        gate.set()
        await server.stop()


@pytest.mark.asyncio
async def test_timed_out_run_ends_with_error_line(tmp_path: Path) -> None:
    gate = threading.Event()
    capture = GatedCapture(gate)
    server = CommandServer(_runner(tmp_path, capture, run_timeout=0.2), host="127.0.0.1", port=0)
    await server.start()
    try:
        reader, writer = await asyncio.open_connection("127.0.0.1", server.bound_port)
        writer.write(b"1,2\n")
        await writer.drain()

        lines = await _read_until(reader, ("ERROR:", "COMPLETE:"))
        assert lines[-1].startswith("ERROR: timed out")

        writer.close()
        await writer.wait_closed()
    finally:
        gate.set()
        await server.stop()


@pytest.mark.asyncio
async def test_same_client_second_command_is_rejected_not_queued(tmp_path: Path) -> None:
    gate = threading.Event()
    capture = GatedCapture(gate)
    server = CommandServer(_runner(tmp_path, capture), host="127.0.0.1", port=0)
    await server.start()
    try:
        reader, writer = await asyncio.open_connection("127.0.0.1", server.bound_port)
        writer.write(b"1\n2\n")
        await writer.drain()

        lines = await _read_until(reader, ("ERROR:",))
        assert lines[-1] == "ERROR: sequence already running"
        assert not any("input 2" in line for line in lines)

        gate.set()
        rest = await _read_until(reader, ("COMPLETE:", "ERROR:"))
        assert rest[-1].startswith("COMPLETE: captured 1/1 input(s)")
        assert capture.calls == [1]

        writer.close()
        await writer.wait_closed()
    finally:
        gate.set()
        await server.stop()


@pytest.mark.asyncio
async def test_half_closed_client_still_gets_completion(tmp_path: Path) -> None:
    capture = GatedCapture()
    server = CommandServer(_runner(tmp_path, capture), host="127.0.0.1", port=0)
    await server.start()
    try:
        reader, writer = await asyncio.open_connection("127.0.0.1", server.bound_port)
        writer.write(b"4\n")
        writer.write_eof()
        await writer.drain()

        lines = await _read_until(reader, ("COMPLETE:", "ERROR:"))
        assert lines[-1].startswith("COMPLETE:")
        assert capture.calls == [4]

        writer.close()
        await writer.wait_closed()
    finally:
        await server.stop()
