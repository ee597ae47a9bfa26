from .ffmpeg_capture import (
    CaptureBudget,
    CaptureError,
    CaptureStrategy,
    FfmpegStillCapture,
    VideoDevice,
    find_ffmpeg,
    framerate_candidates,
    list_devices,
    parse_device_list,
)

__all__ = [
    "CaptureBudget",
    "CaptureError",
    "CaptureStrategy",
    "FfmpegStillCapture",
    "VideoDevice",
    "find_ffmpeg",
    "framerate_candidates",
    "list_devices",
    "parse_device_list",
]
