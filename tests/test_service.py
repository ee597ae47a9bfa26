from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from showcapture import service
from showcapture.config import AppConfig, CaptureConfig, CommandServerConfig, ConsoleConfig, SequenceConfig


def _config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        capture=CaptureConfig(output_dir=tmp_path),
        console=ConsoleConfig(host=None),
        sequence=SequenceConfig(stitch=False),
        command_server=CommandServerConfig(host="127.0.0.1", port=0),
    )


def test_build_station_wires_components(tmp_path: Path) -> None:
    station = service.build_station(_config(tmp_path))

    assert station.server is not None
    assert station.server.runner is station.runner
    assert not station.link.configured
    assert station.runner.router_output == 1


def test_build_station_without_command_server(tmp_path: Path) -> None:
    config = _config(tmp_path)
    config.command_server.enabled = False
    assert service.build_station(config).server is None


@pytest.mark.asyncio
async def test_run_station_records_runtime_state(tmp_path: Path) -> None:
    config = _config(tmp_path)
    state_path = tmp_path / ".showcapture_runtime_state.json"
    stop = asyncio.Event()

    task = asyncio.create_task(service.run_station(config, shutdown_event=stop))
    for _ in range(200):
        if state_path.exists():
            break
        await asyncio.sleep(0.01)

    running = json.loads(state_path.read_text(encoding="utf-8"))
    assert running["running"] is True
    assert "last_startup_utc" in running

    stop.set()
    await asyncio.wait_for(task, timeout=5)

    stopped = json.loads(state_path.read_text(encoding="utf-8"))
    assert stopped["running"] is False
    assert stopped["last_startup_utc"] == running["last_startup_utc"]
    assert "last_shutdown_utc" in stopped


def test_corrupt_runtime_state_reads_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text("[1, 2", encoding="utf-8")
    assert service._read_runtime_state(path) == {}

    path.write_text("[1, 2]", encoding="utf-8")
    assert service._read_runtime_state(path) == {}
