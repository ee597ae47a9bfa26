from __future__ import annotations

from dataclasses import dataclass, field
import enum
from pathlib import Path
from typing import Any, Callable


MIN_INPUT = 1
MAX_INPUT = 6


class RunStatus(str, enum.Enum):
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    REJECTED = "rejected"
    FAILED = "failed"


class ProgressKind(str, enum.Enum):
    SWITCHING = "switching"
    SWITCH_FAILED = "switch_failed"
    CAPTURING = "capturing"
    CAPTURED = "captured"
    CAPTURE_FAILED = "capture_failed"
    STITCHING = "stitching"
    STITCHED = "stitched"
    STITCH_FAILED = "stitch_failed"
    COMPLETE = "complete"


@dataclass(frozen=True)
class ProgressEvent:
    kind: ProgressKind
    message: str
    input_id: int | None = None


ProgressSink = Callable[[ProgressEvent], None]


@dataclass(frozen=True)
class InputOutcome:
    input_id: int
    ok: bool
    path: Path | None = None
    error: str | None = None


@dataclass
class RunOutcome:
    status: RunStatus
    inputs: tuple[int, ...]
    outcomes: list[InputOutcome] = field(default_factory=list)
    folder: Path | None = None
    stitched_path: Path | None = None
    stitch_error: str | None = None
    error: str | None = None

    @classmethod
    def rejected(cls, inputs: tuple[int, ...], reason: str) -> "RunOutcome":
        return cls(status=RunStatus.REJECTED, inputs=inputs, error=reason)

    @property
    def succeeded_count(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if not o.ok)

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.COMPLETED and self.failed_count == 0

    def summary(self) -> str:
        if self.status is RunStatus.REJECTED:
            return f"rejected: {self.error}"
        if self.status is RunStatus.TIMED_OUT:
            return f"timed out after {self.succeeded_count}/{len(self.inputs)} capture(s): {self.error}"
        if self.status is RunStatus.FAILED:
            return f"failed: {self.error}"
        text = f"captured {self.succeeded_count}/{len(self.inputs)} input(s)"
        if self.failed_count:
            text += f", {self.failed_count} failed"
        if self.folder is not None:
            text += f" in {self.folder.name}"
        return text

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "inputs": list(self.inputs),
            "succeeded": self.succeeded_count,
            "failed": self.failed_count,
            "folder": str(self.folder) if self.folder is not None else None,
            "stitched_path": str(self.stitched_path) if self.stitched_path is not None else None,
            "stitch_error": self.stitch_error,
            "error": self.error,
            "outcomes": [
                {
                    "input": o.input_id,
                    "ok": o.ok,
                    "path": str(o.path) if o.path is not None else None,
                    "error": o.error,
                }
                for o in self.outcomes
            ],
        }
