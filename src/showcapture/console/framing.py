from __future__ import annotations

from dataclasses import dataclass
import logging
import struct
from typing import Any, Union

from pythonosc.osc_message import OscMessage, ParseError
from pythonosc.osc_message_builder import OscMessageBuilder


logger = logging.getLogger(__name__)


# Packet-length framing: 4-byte big-endian payload length, then the OSC payload.
HEADER = struct.Struct(">I")
HEADER_SIZE = HEADER.size
MAX_FRAME_SIZE = 1024 * 1024


@dataclass(frozen=True)
class ConsoleMessage:
    address: str
    args: tuple[Any, ...] = ()

    def arg(self, index: int, default: Any = None) -> Any:
        if 0 <= index < len(self.args):
            return self.args[index]
        return default


@dataclass(frozen=True)
class FrameError:
    """A complete frame whose payload could not be parsed as an OSC message."""

    length: int
    reason: str
    payload: bytes


DecodedFrame = Union[ConsoleMessage, FrameError]


def encode_payload(message: ConsoleMessage) -> bytes:
    builder = OscMessageBuilder(address=message.address)
    for value in message.args:
        builder.add_arg(value)
    return builder.build().dgram


def encode_frame(message: ConsoleMessage) -> bytes:
    payload = encode_payload(message)
    return HEADER.pack(len(payload)) + payload


def decode_payload(payload: bytes) -> ConsoleMessage:
    parsed = OscMessage(payload)
    return ConsoleMessage(address=parsed.address, args=tuple(parsed.params))


class FrameTooLarge(ValueError):
    """A length header announced more bytes than the decoder accepts.

    ``frames`` holds the frames decoded from the same chunk before the
    oversized header; the buffer is cleared, so the stream cannot be resumed.
    """

    def __init__(self, length: int, limit: int, frames: list[DecodedFrame]) -> None:
        super().__init__(f"frame of {length} bytes exceeds the {limit} byte limit")
        self.length = length
        self.limit = limit
        self.frames = frames


class FrameDecoder:
    """Incremental decoder for a stream of length-prefixed OSC frames.

    Bytes are accumulated across ``feed`` calls. Every complete frame is
    removed from the buffer and returned in stream order; a trailing partial
    frame stays buffered until the rest of it arrives. A payload that fails
    to parse is returned as a ``FrameError`` and its bytes are dropped, so the
    next frame starts at the following header. A header larger than
    ``max_frame_size`` raises ``FrameTooLarge``.
    """

    def __init__(self, max_frame_size: int = MAX_FRAME_SIZE) -> None:
        self.max_frame_size = max_frame_size
        self._buffer = bytearray()

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    def reset(self) -> None:
        self._buffer.clear()

    def feed(self, chunk: bytes) -> list[DecodedFrame]:
        if chunk:
            self._buffer.extend(chunk)

        frames: list[DecodedFrame] = []
        while len(self._buffer) >= HEADER_SIZE:
            (length,) = HEADER.unpack_from(self._buffer, 0)
            if length > self.max_frame_size:
                self._buffer.clear()
                raise FrameTooLarge(length, self.max_frame_size, frames)
            end = HEADER_SIZE + length
            if len(self._buffer) < end:
                break

            payload = bytes(self._buffer[HEADER_SIZE:end])
            del self._buffer[:end]

            try:
                message = decode_payload(payload)
            except (ParseError, ValueError) as exc:
                logger.warning("discarding malformed console frame (%s bytes): %s", length, exc)
                frames.append(FrameError(length=length, reason=str(exc), payload=payload))
                continue

            logger.debug("console frame %s %s", message.address, list(message.args))
            frames.append(message)

        return frames
