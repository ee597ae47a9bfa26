from .framing import ConsoleMessage, FrameDecoder, FrameError, FrameTooLarge, encode_frame
from .link import ConsoleLink, MessageKind, classify, parse_cue_text
from .reconnect import ReconnectPolicy
from .state import CueState, LinkResult, LinkState, PendingCueResolution, PendingCueSlot

__all__ = [
    "ConsoleMessage",
    "FrameDecoder",
    "FrameError",
    "FrameTooLarge",
    "encode_frame",
    "ConsoleLink",
    "MessageKind",
    "classify",
    "parse_cue_text",
    "ReconnectPolicy",
    "CueState",
    "LinkResult",
    "LinkState",
    "PendingCueResolution",
    "PendingCueSlot",
]
