from .runner import SequenceRunner
from .types import (
    MAX_INPUT,
    MIN_INPUT,
    InputOutcome,
    ProgressEvent,
    ProgressKind,
    ProgressSink,
    RunOutcome,
    RunStatus,
)

__all__ = [
    "SequenceRunner",
    "MAX_INPUT",
    "MIN_INPUT",
    "InputOutcome",
    "ProgressEvent",
    "ProgressKind",
    "ProgressSink",
    "RunOutcome",
    "RunStatus",
]
