from __future__ import annotations

import logging
from pathlib import Path


FRAME_TRACE_LOGGER = "showcapture.console.framing"


def configure_logging(level: str, log_file: Path | None = None, frame_trace: bool = False) -> None:
    resolved_level = getattr(logging, level.upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=resolved_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        handlers=handlers,
        force=True,
    )

    # Per-frame traffic (keepalive pings included) logs at DEBUG only with frame_trace.
    frame_level = logging.DEBUG if frame_trace else max(resolved_level, logging.INFO)
    logging.getLogger(FRAME_TRACE_LOGGER).setLevel(frame_level)
