from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import re
import shutil
import subprocess
import time
from typing import Callable, Protocol, Sequence

from showcapture.config import CaptureConfig
from showcapture.console.state import CueState
from showcapture.utils.naming import build_folder_name, unique_file_path


logger = logging.getLogger(__name__)


class CaptureError(RuntimeError):
    pass


@dataclass(frozen=True)
class VideoDevice:
    index: int
    name: str

    @property
    def is_blackmagic(self) -> bool:
        return "blackmagic" in self.name.lower() or "ultrastudio" in self.name.lower()


_DEVICE_LINE_RE = re.compile(r"\[AVFoundation indev.*?\]\s+\[(?P<index>\d+)\]\s+(?P<name>.+)$")
_VIDEO_HEADER = "AVFoundation video devices:"
_AUDIO_HEADER = "AVFoundation audio devices:"
# ffmpeg exits non-zero after listing devices because no input was opened.
_LIST_OK_RETURNCODES = {0, 1, 251}
_FALLBACK_FRAMERATES = (30.0, 29.97, 24.0, 23.98)


def find_ffmpeg(candidates: Sequence[str]) -> str | None:
    for candidate in candidates:
        resolved = shutil.which(candidate)
        if resolved is not None:
            return resolved
    return None


def _run_ffmpeg(cmd: list[str], timeout: float) -> subprocess.CompletedProcess[str] | None:
    try:
        return subprocess.run(
            cmd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        logger.warning("ffmpeg timed out after %.0fs: %s", timeout, " ".join(cmd))
        return None
    except OSError as exc:
        logger.warning("ffmpeg could not start: %s", exc)
        return None


def parse_device_list(stderr: str) -> list[VideoDevice]:
    devices: list[VideoDevice] = []
    in_video = False
    for line in stderr.splitlines():
        if _VIDEO_HEADER in line:
            in_video = True
            continue
        if _AUDIO_HEADER in line:
            break
        if not in_video:
            continue
        m = _DEVICE_LINE_RE.search(line)
        if m:
            devices.append(VideoDevice(index=int(m.group("index")), name=m.group("name").strip()))
    return devices


def list_devices(ffmpeg: str, input_format: str = "avfoundation", timeout: float = 10.0) -> list[VideoDevice]:
    proc = _run_ffmpeg([ffmpeg, "-hide_banner", "-f", input_format, "-list_devices", "true", "-i", ""], timeout)
    if proc is None or proc.returncode not in _LIST_OK_RETURNCODES:
        return []
    return parse_device_list(proc.stderr or "")


def framerate_candidates(preferred: float) -> list[float]:
    rates: list[float] = []
    for rate in (preferred, *_FALLBACK_FRAMERATES):
        if rate > 0 and rate not in rates:
            rates.append(rate)
    return rates


def _valid_still(path: Path) -> bool:
    try:
        if path.stat().st_size > 0:
            return True
    except FileNotFoundError:
        return False
    path.unlink(missing_ok=True)
    return False


class CaptureStrategy(Protocol):
    name: str

    def attempt(self, output_path: Path) -> bool:
        ...


class CaptureBudget:
    """Wall-clock allowance shared by every ffmpeg call of one capture.

    Each call gets ``attempt_seconds`` or whatever remains of ``total_seconds``,
    whichever is smaller.
    """

    def __init__(self, total_seconds: float, attempt_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.total_seconds = total_seconds
        self.attempt_seconds = attempt_seconds
        self._clock = clock
        self._deadline = clock() + total_seconds

    @property
    def remaining(self) -> float:
        return max(0.0, self._deadline - self._clock())

    @property
    def exhausted(self) -> bool:
        return self.remaining <= 0

    def next_timeout(self) -> float | None:
        remaining = self.remaining
        if remaining <= 0:
            return None
        return min(self.attempt_seconds, remaining)


class _FfmpegGrab:
    name = "ffmpeg"

    def __init__(self, ffmpeg: str, input_format: str, budget: CaptureBudget) -> None:
        self.ffmpeg = ffmpeg
        self.input_format = input_format
        self.budget = budget

    def grab(self, device_spec: str, output_path: Path, framerate: float | None = None) -> bool:
        timeout = self.budget.next_timeout()
        if timeout is None:
            return False
        cmd = [self.ffmpeg, "-hide_banner", "-loglevel", "error", "-nostats", "-y", "-f", self.input_format]
        if framerate is not None:
            cmd += ["-framerate", f"{framerate:g}"]
        cmd += ["-i", device_spec, "-frames:v", "1", "-update", "1", str(output_path)]

        logger.debug("capture command: %s", " ".join(cmd))
        proc = _run_ffmpeg(cmd, timeout)
        if proc is not None and proc.returncode != 0:
            logger.debug("ffmpeg exited %s: %s", proc.returncode, (proc.stderr or "").strip()[-500:])
        return _valid_still(output_path)


class SelectedDeviceStrategy(_FfmpegGrab):
    name = "selected_device"

    def __init__(self, ffmpeg: str, input_format: str, budget: CaptureBudget, device_spec: str, framerates: list[float]) -> None:
        super().__init__(ffmpeg, input_format, budget)
        self.device_spec = device_spec
        self.framerates = framerates

    def attempt(self, output_path: Path) -> bool:
        for rate in self.framerates:
            if self.grab(self.device_spec, output_path, framerate=rate):
                logger.info("captured from device %s at %gfps", self.device_spec, rate)
                return True
        return False


class ListedDeviceStrategy(_FfmpegGrab):
    """Grab from the first video device ffmpeg reports."""

    name = "device_index"

    def attempt(self, output_path: Path) -> bool:
        timeout = self.budget.next_timeout()
        if timeout is None:
            return False
        devices = list_devices(self.ffmpeg, self.input_format, timeout)
        if not devices:
            return False
        device = devices[0]
        logger.info("trying listed video device %s: %s", device.index, device.name)
        return self.grab(str(device.index), output_path, framerate=30.0)


class NamedDeviceStrategy(_FfmpegGrab):
    name = "device_name"

    def __init__(self, ffmpeg: str, input_format: str, budget: CaptureBudget, names: Sequence[str]) -> None:
        super().__init__(ffmpeg, input_format, budget)
        self.names = tuple(names)

    def attempt(self, output_path: Path) -> bool:
        for device_name in self.names:
            if self.grab(device_name, output_path):
                logger.info("captured from device name %s", device_name)
                return True
        return False


class FirstDeviceStrategy(_FfmpegGrab):
    name = "first_device"

    def attempt(self, output_path: Path) -> bool:
        return self.grab("0", output_path, framerate=30.0)


class FfmpegStillCapture:
    """Grabs one still per call, trying each capture strategy until one writes a frame."""

    def __init__(
        self,
        config: CaptureConfig,
        cue_provider: Callable[[], CueState] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._cue_provider = cue_provider
        self._clock = clock

    def __call__(self, input_id: int, folder: Path, timestamp: str) -> Path:
        return self.capture(input_id, folder, timestamp)

    def output_path(self, input_id: int, folder: Path, timestamp: str) -> Path:
        cue = self._cue_provider() if self._cue_provider is not None else None
        stem = build_folder_name(self.config.file_template, input_id, timestamp, cue)
        return unique_file_path(folder / f"{stem}.png")

    def budget(self) -> CaptureBudget:
        return CaptureBudget(self.config.timeout_seconds, self.config.attempt_timeout_seconds, clock=self._clock)

    def strategies(self, ffmpeg: str, budget: CaptureBudget | None = None) -> list[CaptureStrategy]:
        cfg = self.config
        budget = budget if budget is not None else self.budget()
        chain: list[CaptureStrategy] = []
        selected = cfg.device_name if cfg.device_name else (str(cfg.device_index) if cfg.device_index is not None else None)
        if selected is not None:
            chain.append(
                SelectedDeviceStrategy(
                    ffmpeg,
                    cfg.input_format,
                    budget,
                    device_spec=selected,
                    framerates=framerate_candidates(cfg.framerate),
                )
            )
        chain.append(ListedDeviceStrategy(ffmpeg, cfg.input_format, budget))
        chain.append(NamedDeviceStrategy(ffmpeg, cfg.input_format, budget, cfg.device_names))
        chain.append(FirstDeviceStrategy(ffmpeg, cfg.input_format, budget))
        return chain

    def capture(self, input_id: int, folder: Path, timestamp: str) -> Path:
        ffmpeg = find_ffmpeg(self.config.ffmpeg_paths)
        if ffmpeg is None:
            raise CaptureError("ffmpeg not found; install it or set capture.ffmpeg_paths")

        folder.mkdir(parents=True, exist_ok=True)
        output_path = self.output_path(input_id, folder, timestamp)
        budget = self.budget()
        for strategy in self.strategies(ffmpeg, budget):
            if budget.exhausted:
                break
            logger.info("capturing input %s via %s", input_id, strategy.name)
            if strategy.attempt(output_path):
                logger.info("captured input %s -> %s (%s)", input_id, output_path, strategy.name)
                return output_path
            logger.info("capture method %s failed for input %s", strategy.name, input_id)

        if budget.exhausted:
            raise CaptureError(f"capture budget of {budget.total_seconds:g}s exhausted for input {input_id}")
        raise CaptureError(f"all capture methods failed for input {input_id}")
