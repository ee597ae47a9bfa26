from __future__ import annotations

import json
from pathlib import Path

from PIL import Image
import pytest

from showcapture import cli, service
from showcapture.console import CueState
from showcapture.router import VideohubRouter
from showcapture.sequence import InputOutcome, RunOutcome, RunStatus


def _write_config(tmp_path: Path, extra: str = "") -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(f"capture:\n  output_dir: ./out\n{extra}", encoding="utf-8")
    return cfg_file


def test_parser_requires_subcommand() -> None:
    with pytest.raises(SystemExit):
        cli.main([])


def test_stitch_command_json(tmp_path: Path, capsys) -> None:
    folder = tmp_path / "run"
    folder.mkdir()
    for i, color in enumerate(((255, 0, 0), (0, 255, 0))):
        Image.new("RGB", (16, 9), color).save(folder / f"capture_{i}.png")

    code = cli.main(["stitch", str(folder), "--json"])

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["count"] == 2
    assert Path(payload["output"]) == folder.resolve() / "Processed" / "run.jpg"


def test_stitch_command_reports_errors(tmp_path: Path, capsys) -> None:
    code = cli.main(["stitch", str(tmp_path / "missing")])

    assert code == 1
    assert "not a folder" in capsys.readouterr().err


def test_capture_command_runs_one_sequence(tmp_path: Path, monkeypatch, capsys) -> None:
    seen: dict[str, object] = {}

    async def _fake_run(config, inputs, progress=None, console_wait_seconds=0.0):
        seen["inputs"] = list(inputs)
        seen["wait"] = console_wait_seconds
        return RunOutcome(
            status=RunStatus.COMPLETED,
            inputs=tuple(inputs),
            outcomes=[InputOutcome(input_id=i, ok=True, path=tmp_path / f"{i}.png") for i in inputs],
        )

    monkeypatch.setattr(service, "run_one_sequence", _fake_run)

    code = cli.main(["capture", "1,9,x,2", "--config", str(_write_config(tmp_path)), "--json"])

    assert code == 0
    assert seen == {"inputs": [1, 2], "wait": 0.0}
    payload = json.loads(capsys.readouterr().out)
    assert payload["status"] == "completed"
    assert payload["succeeded"] == 2


def test_capture_command_rejects_empty_inputs(tmp_path: Path, capsys) -> None:
    code = cli.main(["capture", "abc", "--config", str(_write_config(tmp_path))])

    assert code == 2
    assert "no valid inputs" in capsys.readouterr().err


def test_capture_command_partial_failure_exit_code(tmp_path: Path, monkeypatch) -> None:
    async def _fake_run(config, inputs, progress=None, console_wait_seconds=0.0):
        return RunOutcome(
            status=RunStatus.COMPLETED,
            inputs=tuple(inputs),
            outcomes=[InputOutcome(input_id=1, ok=False, error="boom")],
        )

    monkeypatch.setattr(service, "run_one_sequence", _fake_run)

    assert cli.main(["capture", "1", "--config", str(_write_config(tmp_path))]) == 1


def test_switch_command_uses_configured_output(tmp_path: Path, monkeypatch, capsys) -> None:
    calls: list[tuple[int, int | None]] = []
    monkeypatch.setattr(VideohubRouter, "switch", lambda self, i, o=None: calls.append((i, o)))

    code = cli.main(["switch", "3", "--config", str(_write_config(tmp_path, "router:\n  output: 2\n"))])

    assert code == 0
    assert calls == [(3, None)]
    assert "Routed output 2 to input 3" in capsys.readouterr().out


def test_cue_status_requires_console_host(tmp_path: Path, capsys) -> None:
    code = cli.main(["cue-status", "--config", str(_write_config(tmp_path))])

    assert code == 1
    assert "console.host" in capsys.readouterr().err


def test_cue_status_json(tmp_path: Path, monkeypatch, capsys) -> None:
    async def _fake_read(config, wait_seconds=2.0):
        return CueState(show_name="Hamlet", cue_list="1", cue_number="5", connected=True)

    monkeypatch.setattr(service, "read_cue_state", _fake_read)
    cfg = _write_config(tmp_path, "console:\n  host: 127.0.0.1\n")

    code = cli.main(["cue-status", "--config", str(cfg), "--json", "--wait", "0"])

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["show_name"] == "Hamlet"
    assert payload["cue_number"] == "5"
