from __future__ import annotations

from datetime import datetime
from pathlib import Path
import re

from showcapture.console.state import CueState


_TOKEN_RE = re.compile(r"\{(\w+)\}")
_UNSAFE_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_SPACE_RE = re.compile(r"\s+")
_REPEAT_SEP_RE = re.compile(r"_{2,}")
_MAX_NAME_LENGTH = 120


def run_timestamp(moment: datetime | None = None) -> str:
    moment = moment or datetime.now()
    return moment.strftime("%Y-%m-%d_%H-%M-%S")


def sanitize_name(text: str, fallback: str = "capture") -> str:
    cleaned = _UNSAFE_RE.sub("_", text)
    cleaned = _SPACE_RE.sub("_", cleaned)
    cleaned = _REPEAT_SEP_RE.sub("_", cleaned)
    cleaned = cleaned.strip("._- ")[:_MAX_NAME_LENGTH].rstrip("._- ")
    return cleaned or fallback


def render_template(template: str, input_id: int, timestamp: str, cue: CueState | None = None) -> str:
    cue = cue or CueState()
    values = {
        "input": str(input_id),
        "timestamp": timestamp,
        "date": timestamp.split("_", 1)[0],
        "time": timestamp.split("_", 1)[-1],
        "show": cue.show_name,
        "cuelist": cue.cue_list,
        "cuelist_name": cue.cue_list_name,
        "cue": cue.cue_number,
        "cue_label": cue.cue_label,
    }

    def _sub(m: re.Match[str]) -> str:
        key = m.group(1)
        return values.get(key, m.group(0))

    return _TOKEN_RE.sub(_sub, template)


def build_folder_name(template: str, input_id: int, timestamp: str, cue: CueState | None = None) -> str:
    return sanitize_name(render_template(template, input_id, timestamp, cue))


def unique_file_path(path: Path) -> Path:
    candidate = path
    index = 1
    while candidate.exists():
        index += 1
        candidate = path.with_name(f"{path.stem}_{index}{path.suffix}")
    return candidate


def create_unique_directory(path: Path) -> Path:
    """Create ``path``, or ``path_2``, ``path_3``... if it is already taken."""
    candidate = path
    index = 1
    while True:
        try:
            candidate.mkdir(parents=True, exist_ok=False)
            return candidate
        except FileExistsError:
            index += 1
            candidate = path.with_name(f"{path.name}_{index}")
