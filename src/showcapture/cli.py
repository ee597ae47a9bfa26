from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
import sys

from showcapture.config import load_config
from showcapture.control import parse_command_inputs
from showcapture.sequence import ProgressEvent
from showcapture.utils.logging_utils import configure_logging


logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="showcapture")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the console link and command server")
    serve.add_argument("--config", required=True, help="Path to YAML config")
    serve.add_argument("--frame-trace", action="store_true", help="Log every console frame at DEBUG")

    capture = sub.add_parser("capture", help="Run one capture sequence, e.g. 1,2,6")
    capture.add_argument("inputs", help="Comma-separated router inputs (1-6)")
    capture.add_argument("--config", required=True, help="Path to YAML config")
    capture.add_argument(
        "--console-wait",
        type=float,
        default=0.0,
        help="Seconds to collect cue metadata from the console before capturing",
    )
    capture.add_argument("--json", action="store_true", help="Emit machine-readable JSON")

    switch = sub.add_parser("switch", help="Route a router output to an input")
    switch.add_argument("input", type=int, help="Router input (1-based)")
    switch.add_argument("--config", required=True, help="Path to YAML config")
    switch.add_argument("--output", type=int, default=None, help="Router output (default from config)")

    stitch = sub.add_parser("stitch", help="Stitch 2-6 stills in a folder into a contact sheet")
    stitch.add_argument("folder", help="Folder containing the stills")
    stitch.add_argument("--out-dir", default=None, help="Output directory (default: <folder>/Processed)")
    stitch.add_argument("--json", action="store_true", help="Emit machine-readable JSON")

    devices = sub.add_parser("devices", help="List capture devices reported by ffmpeg")
    devices.add_argument("--config", required=True, help="Path to YAML config")
    devices.add_argument("--json", action="store_true", help="Emit machine-readable JSON")

    cue = sub.add_parser("cue-status", help="Connect to the console and print its cue state")
    cue.add_argument("--config", required=True, help="Path to YAML config")
    cue.add_argument("--wait", type=float, default=2.0, help="Seconds to listen before printing")
    cue.add_argument("--json", action="store_true", help="Emit machine-readable JSON")

    return parser


def _cmd_serve(args: argparse.Namespace) -> int:
    from showcapture.service import run_station_service

    config = load_config(args.config)
    configure_logging(config.log_level, config.log_file, frame_trace=bool(args.frame_trace))
    run_station_service(config)
    return 0


def _cmd_capture(args: argparse.Namespace) -> int:
    from showcapture.service import run_one_sequence

    config = load_config(args.config)
    configure_logging(config.log_level, config.log_file)

    inputs = parse_command_inputs(args.inputs)
    if not inputs:
        print(f"error: no valid inputs in {args.inputs!r}", file=sys.stderr)
        return 2

    def progress(event: ProgressEvent) -> None:
        if not args.json:
            print(event.message)

    outcome = asyncio.run(
        run_one_sequence(config, inputs, progress=progress, console_wait_seconds=float(args.console_wait))
    )

    if args.json:
        print(json.dumps(outcome.to_json_dict(), indent=2))
    elif not outcome.ok:
        print(f"error: {outcome.summary()}", file=sys.stderr)
    return 0 if outcome.ok else 1


def _cmd_switch(args: argparse.Namespace) -> int:
    from showcapture.router import VideohubRouter

    config = load_config(args.config)
    configure_logging(config.log_level, config.log_file)

    router = VideohubRouter(config.router)
    router.switch(int(args.input), args.output)
    output = args.output if args.output is not None else config.router.output
    print(f"Routed output {output} to input {args.input}")
    return 0


def _cmd_stitch(args: argparse.Namespace) -> int:
    from showcapture.stitch import ContactSheetStitcher

    folder = Path(args.folder).expanduser().resolve()
    out_dir = Path(args.out_dir).expanduser().resolve() if args.out_dir else None
    result = ContactSheetStitcher(output_dir=out_dir).stitch_folder(folder)

    if args.json:
        print(json.dumps({"folder": str(folder), "output": str(result.path), "count": result.count}, indent=2))
        return 0

    print(f"Stitched {result.count} images: {result.path}")
    return 0


def _cmd_devices(args: argparse.Namespace) -> int:
    from showcapture.capture import find_ffmpeg, list_devices

    config = load_config(args.config)
    configure_logging(config.log_level, config.log_file)

    ffmpeg = find_ffmpeg(config.capture.ffmpeg_paths)
    if ffmpeg is None:
        print("error: ffmpeg not found in any configured location", file=sys.stderr)
        return 1

    devices = list_devices(ffmpeg, config.capture.input_format)
    if args.json:
        payload = {
            "ffmpeg": ffmpeg,
            "devices": [{"index": d.index, "name": d.name, "blackmagic": d.is_blackmagic} for d in devices],
        }
        print(json.dumps(payload, indent=2))
        return 0

    print(f"ffmpeg: {ffmpeg}")
    if not devices:
        print("No video devices detected")
        return 0
    for d in devices:
        marker = " (Blackmagic)" if d.is_blackmagic else ""
        print(f"  [{d.index}] {d.name}{marker}")
    return 0


def _cmd_cue_status(args: argparse.Namespace) -> int:
    from showcapture.service import read_cue_state

    config = load_config(args.config)
    configure_logging(config.log_level, config.log_file)
    if not config.console.host:
        print("error: console.host is not configured", file=sys.stderr)
        return 1

    state = asyncio.run(read_cue_state(config, wait_seconds=float(args.wait)))
    if args.json:
        print(json.dumps(state.to_json_dict(), indent=2))
        return 0 if state.connected else 1

    print(f"Console: {config.console.host}:{config.console.port} ({'connected' if state.connected else 'offline'})")
    print(f"  show:     {state.show_name}")
    print(f"  cue list: {state.cue_list} {state.cue_list_name}".rstrip())
    print(f"  cue:      {state.cue_number} {state.cue_label}".rstrip())
    return 0 if state.connected else 1


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "serve":
            return _cmd_serve(args)
        if args.command == "capture":
            return _cmd_capture(args)
        if args.command == "switch":
            return _cmd_switch(args)
        if args.command == "stitch":
            return _cmd_stitch(args)
        if args.command == "devices":
            return _cmd_devices(args)
        if args.command == "cue-status":
            return _cmd_cue_status(args)

        parser.error(f"unknown command: {args.command}")
        return 2
    except Exception as exc:
        logger.exception("fatal error")
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
