from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


DEFAULT_FFMPEG_PATHS: tuple[str, ...] = (
    "ffmpeg",
    "/usr/local/bin/ffmpeg",
    "/opt/homebrew/bin/ffmpeg",
    "/usr/bin/ffmpeg",
)

DEFAULT_DEVICE_NAMES: tuple[str, ...] = (
    "UltraStudio Recorder 3G",
    "Blackmagic UltraStudio Recorder 3G",
    "UltraStudio HD Mini",
    "Blackmagic UltraStudio HD Mini",
    "UltraStudio",
)


@dataclass
class ConsoleConfig:
    host: str | None = None
    port: int = 3032
    auto_connect: bool = True
    connect_timeout_seconds: float = 5.0
    keepalive_seconds: float = 5.0
    lookup_delay_seconds: float = 0.1
    reconnect_fast_seconds: float = 10.0
    reconnect_slow_seconds: float = 30.0
    reconnect_tier_seconds: float = 120.0
    max_frame_bytes: int = 1024 * 1024


@dataclass
class RouterConfig:
    host: str = "10.101.130.101"
    port: int = 9990
    output: int = 1
    max_inputs: int = 6
    max_outputs: int = 2
    timeout_seconds: float = 5.0


@dataclass
class CaptureConfig:
    output_dir: Path
    folder_template: str = "{show}_cue{cue}_{timestamp}"
    file_template: str = "capture_{input}_{timestamp}"
    ffmpeg_paths: tuple[str, ...] = DEFAULT_FFMPEG_PATHS
    input_format: str = "avfoundation"
    device_index: int | None = None
    device_name: str | None = None
    device_names: tuple[str, ...] = DEFAULT_DEVICE_NAMES
    framerate: float = 30.0
    timeout_seconds: float = 30.0
    attempt_timeout_seconds: float = 10.0


@dataclass
class SequenceConfig:
    settle_seconds: float = 0.5
    post_capture_seconds: float = 0.5
    run_timeout_seconds: float = 120.0
    reset_input: int = 1
    stitch: bool = True
    stitch_output_dir: Path | None = None


@dataclass
class CommandServerConfig:
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 9999


@dataclass
class AppConfig:
    capture: CaptureConfig
    console: ConsoleConfig = field(default_factory=ConsoleConfig)
    router: RouterConfig = field(default_factory=RouterConfig)
    sequence: SequenceConfig = field(default_factory=SequenceConfig)
    command_server: CommandServerConfig = field(default_factory=CommandServerConfig)
    log_level: str = "INFO"
    log_file: Path | None = None


def _expand_path(value: str | None, base: Path) -> Path | None:
    if value in (None, ""):
        return None
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = (base / path).resolve()
    return path


def _require(data: dict[str, Any], key: str, section: str) -> Any:
    if key not in data:
        raise ValueError(f"missing required config key: {section}.{key}")
    return data[key]


def _optional_int(value: Any) -> int | None:
    if value in (None, ""):
        return None
    return int(value)


def _port(value: Any, key: str) -> int:
    port = int(value)
    if not 0 <= port <= 65535:
        raise ValueError(f"{key} must be a TCP port, got {port}")
    return port


def load_config(path: str | Path) -> AppConfig:
    try:
        import yaml  # type: ignore
    except Exception as exc:
        raise RuntimeError("PyYAML is required for config loading. Install with: pip install PyYAML") from exc

    cfg_path = Path(path).expanduser().resolve()
    with cfg_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    base = cfg_path.parent
    console_raw = raw.get("console") or {}
    router_raw = raw.get("router") or {}
    capture_raw = raw.get("capture") or {}
    sequence_raw = raw.get("sequence") or {}
    server_raw = raw.get("command_server") or {}

    console = ConsoleConfig(
        host=(str(console_raw["host"]) if console_raw.get("host") else None),
        port=_port(console_raw.get("port", 3032), "console.port"),
        auto_connect=bool(console_raw.get("auto_connect", True)),
        connect_timeout_seconds=float(console_raw.get("connect_timeout_seconds", 5.0)),
        keepalive_seconds=float(console_raw.get("keepalive_seconds", 5.0)),
        lookup_delay_seconds=float(console_raw.get("lookup_delay_seconds", 0.1)),
        reconnect_fast_seconds=float(console_raw.get("reconnect_fast_seconds", 10.0)),
        reconnect_slow_seconds=float(console_raw.get("reconnect_slow_seconds", 30.0)),
        reconnect_tier_seconds=float(console_raw.get("reconnect_tier_seconds", 120.0)),
        max_frame_bytes=int(console_raw.get("max_frame_bytes", 1024 * 1024)),
    )

    router = RouterConfig(
        host=str(router_raw.get("host", "10.101.130.101")),
        port=_port(router_raw.get("port", 9990), "router.port"),
        output=int(router_raw.get("output", 1)),
        max_inputs=int(router_raw.get("max_inputs", 6)),
        max_outputs=int(router_raw.get("max_outputs", 2)),
        timeout_seconds=float(router_raw.get("timeout_seconds", 5.0)),
    )

    capture = CaptureConfig(
        output_dir=_expand_path(_require(capture_raw, "output_dir", "capture"), base) or Path("."),
        folder_template=str(capture_raw.get("folder_template", "{show}_cue{cue}_{timestamp}")),
        file_template=str(capture_raw.get("file_template", "capture_{input}_{timestamp}")),
        ffmpeg_paths=tuple(str(p) for p in capture_raw.get("ffmpeg_paths", DEFAULT_FFMPEG_PATHS)),
        input_format=str(capture_raw.get("input_format", "avfoundation")),
        device_index=_optional_int(capture_raw.get("device_index")),
        device_name=capture_raw.get("device_name") or None,
        device_names=tuple(str(n) for n in capture_raw.get("device_names", DEFAULT_DEVICE_NAMES)),
        framerate=float(capture_raw.get("framerate", 30.0)),
        timeout_seconds=float(capture_raw.get("timeout_seconds", 30.0)),
        attempt_timeout_seconds=float(capture_raw.get("attempt_timeout_seconds", 10.0)),
    )

    sequence = SequenceConfig(
        settle_seconds=float(sequence_raw.get("settle_seconds", 0.5)),
        post_capture_seconds=float(sequence_raw.get("post_capture_seconds", 0.5)),
        run_timeout_seconds=float(sequence_raw.get("run_timeout_seconds", 120.0)),
        reset_input=int(sequence_raw.get("reset_input", 1)),
        stitch=bool(sequence_raw.get("stitch", True)),
        stitch_output_dir=_expand_path(sequence_raw.get("stitch_output_dir"), base),
    )

    command_server = CommandServerConfig(
        enabled=bool(server_raw.get("enabled", True)),
        host=str(server_raw.get("host", "0.0.0.0")),
        port=_port(server_raw.get("port", 9999), "command_server.port"),
    )

    if not 1 <= router.output <= router.max_outputs:
        raise ValueError(f"router.output must be between 1 and {router.max_outputs}")
    if sequence.run_timeout_seconds <= 0:
        raise ValueError("sequence.run_timeout_seconds must be positive")
    if capture.timeout_seconds <= 0 or capture.attempt_timeout_seconds <= 0:
        raise ValueError("capture.timeout_seconds and capture.attempt_timeout_seconds must be positive")

    app = AppConfig(
        capture=capture,
        console=console,
        router=router,
        sequence=sequence,
        command_server=command_server,
        log_level=str(raw.get("log_level", "INFO")),
        log_file=_expand_path(raw.get("log_file"), base),
    )

    ensure_dirs(app)
    return app


def ensure_dirs(config: AppConfig) -> None:
    config.capture.output_dir.mkdir(parents=True, exist_ok=True)
    if config.sequence.stitch_output_dir is not None:
        config.sequence.stitch_output_dir.mkdir(parents=True, exist_ok=True)
    if config.log_file is not None:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
