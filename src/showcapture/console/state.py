from __future__ import annotations

from dataclasses import asdict, dataclass
import enum
from typing import Any


class LinkState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class CueState:
    show_name: str = ""
    cue_list: str = ""
    cue_list_name: str = ""
    cue_number: str = ""
    cue_label: str = ""
    connected: bool = False

    def to_json_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LinkResult:
    ok: bool
    error: str | None = None


@dataclass(frozen=True)
class PendingCueResolution:
    cue_list: str
    cue_number: str


class PendingCueSlot:
    """Holds at most one two-step cue lookup that is waiting for its cuelist response."""

    def __init__(self) -> None:
        self._record: PendingCueResolution | None = None

    @property
    def current(self) -> PendingCueResolution | None:
        return self._record

    def offer(self, record: PendingCueResolution) -> PendingCueResolution | None:
        """Replace the pending record and return the one it superseded, if any."""
        superseded = self._record
        self._record = record
        return superseded

    def take(self) -> PendingCueResolution | None:
        record = self._record
        self._record = None
        return record

    def clear(self) -> None:
        self._record = None
