from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
import signal
from typing import Sequence

from showcapture.capture import FfmpegStillCapture
from showcapture.config import AppConfig
from showcapture.console import ConsoleLink, CueState
from showcapture.control import CommandServer
from showcapture.router import VideohubRouter
from showcapture.sequence import ProgressSink, RunOutcome, SequenceRunner
from showcapture.stitch import ContactSheetStitcher


logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _runtime_state_path(config: AppConfig) -> Path:
    return config.capture.output_dir / ".showcapture_runtime_state.json"


def _read_runtime_state(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    if not isinstance(raw, dict):
        return {}
    return raw


def _write_runtime_state(path: Path, payload: dict[str, object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


def _log_cue_state(state: CueState) -> None:
    logger.info(
        "cue state: connected=%s show=%r list=%s %r cue=%s %r",
        state.connected,
        state.show_name,
        state.cue_list,
        state.cue_list_name,
        state.cue_number,
        state.cue_label,
    )


@dataclass
class Station:
    link: ConsoleLink
    runner: SequenceRunner
    server: CommandServer | None


def build_station(config: AppConfig, link: ConsoleLink | None = None) -> Station:
    link = link or ConsoleLink(config.console)
    router = VideohubRouter(config.router)
    capture = FfmpegStillCapture(config.capture, cue_provider=link.snapshot)
    stitcher = None
    if config.sequence.stitch:
        stitcher = ContactSheetStitcher(output_dir=config.sequence.stitch_output_dir)

    runner = SequenceRunner(
        switch_router=router,
        capture_still=capture,
        output_dir=config.capture.output_dir,
        config=config.sequence,
        stitch_folder=stitcher,
        folder_template=config.capture.folder_template,
        cue_provider=link.snapshot,
        router_output=config.router.output,
    )

    server = None
    if config.command_server.enabled:
        server = CommandServer(runner, host=config.command_server.host, port=config.command_server.port)
    return Station(link=link, runner=runner, server=server)


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            logger.debug("signal handler for %s unavailable on this platform", sig)


async def run_station(config: AppConfig, shutdown_event: asyncio.Event | None = None) -> None:
    station = build_station(config)
    stop = shutdown_event or asyncio.Event()
    if shutdown_event is None:
        _install_signal_handlers(stop)

    runtime_state_path = _runtime_state_path(config)
    runtime_state = _read_runtime_state(runtime_state_path)
    runtime_state["last_startup_utc"] = _utc_now_iso()
    runtime_state["running"] = True
    runtime_state["command_port"] = config.command_server.port if station.server is not None else None
    _write_runtime_state(runtime_state_path, runtime_state)

    unsubscribe = station.link.subscribe(_log_cue_state)
    try:
        if station.server is not None:
            await station.server.start()

        if config.console.auto_connect and station.link.configured:
            result = await station.link.connect()
            if not result.ok:
                logger.warning("console connect failed: %s", result.error)
        elif not station.link.configured:
            logger.info("no console host configured; cue metadata disabled")

        logger.info("capture station running; output root %s", config.capture.output_dir)
        await stop.wait()
        logger.info("shutdown requested")
    finally:
        unsubscribe()
        if station.server is not None:
            await station.server.stop()
        await station.link.disconnect()

        runtime_state = _read_runtime_state(runtime_state_path)
        runtime_state["running"] = False
        runtime_state["last_shutdown_utc"] = _utc_now_iso()
        _write_runtime_state(runtime_state_path, runtime_state)


def run_station_service(config: AppConfig) -> None:
    try:
        asyncio.run(run_station(config))
    except KeyboardInterrupt:
        logger.info("interrupt received, shutting down")


async def _connect_for_metadata(link: ConsoleLink, wait_seconds: float) -> None:
    if not link.configured:
        return
    result = await link.connect()
    if not result.ok:
        logger.warning("console connect failed: %s", result.error)
        return
    # Give the console time to answer the subscribe with show and cue state.
    await asyncio.sleep(wait_seconds)


async def run_one_sequence(
    config: AppConfig,
    inputs: Sequence[int],
    progress: ProgressSink | None = None,
    console_wait_seconds: float = 0.0,
) -> RunOutcome:
    link = ConsoleLink(config.console)
    station = build_station(config, link=link)
    try:
        if console_wait_seconds > 0:
            await _connect_for_metadata(link, console_wait_seconds)
        return await station.runner.run(inputs, progress=progress)
    finally:
        await link.disconnect()


async def read_cue_state(config: AppConfig, wait_seconds: float = 2.0) -> CueState:
    link = ConsoleLink(config.console)
    try:
        await _connect_for_metadata(link, wait_seconds)
        return link.cue_state
    finally:
        await link.disconnect()
