from __future__ import annotations

import struct

import pytest

from showcapture.console.framing import (
    ConsoleMessage,
    FrameDecoder,
    FrameError,
    FrameTooLarge,
    encode_frame,
    encode_payload,
)


def _messages() -> list[ConsoleMessage]:
    return [
        ConsoleMessage("/eos/out/show/name", ("Hamlet",)),
        ConsoleMessage("/eos/out/active/cue/1/12.5", (1.5,)),
        ConsoleMessage("/eos/out/get/cuelist/1/list/0/1", ("1", "uid", "Main Stage")),
        ConsoleMessage("/eos/ping"),
    ]


def test_encode_frame_prefixes_payload_length_big_endian() -> None:
    msg = ConsoleMessage("/eos/subscribe", (1,))
    payload = encode_payload(msg)
    frame = encode_frame(msg)

    assert frame[:4] == struct.pack(">I", len(payload))
    assert frame[4:] == payload
    assert len(payload) % 4 == 0


def test_decode_concatenated_frames_in_order() -> None:
    msgs = _messages()
    stream = b"".join(encode_frame(m) for m in msgs)

    decoder = FrameDecoder()
    out = decoder.feed(stream)

    assert out == msgs
    assert decoder.pending_bytes == 0


def test_decode_is_independent_of_chunking() -> None:
    msgs = _messages()
    stream = b"".join(encode_frame(m) for m in msgs)

    for chunk_size in (1, 3, 5, 7, 64):
        decoder = FrameDecoder()
        out = []
        for i in range(0, len(stream), chunk_size):
            out.extend(decoder.feed(stream[i : i + chunk_size]))
        assert out == msgs, chunk_size


def test_partial_frame_stays_buffered_until_complete() -> None:
    frame = encode_frame(ConsoleMessage("/eos/out/show/name", ("Show",)))
    decoder = FrameDecoder()

    assert decoder.feed(frame[:2]) == []
    assert decoder.feed(frame[2:-1]) == []
    assert decoder.pending_bytes == len(frame) - 1

    out = decoder.feed(frame[-1:])
    assert out == [ConsoleMessage("/eos/out/show/name", ("Show",))]
    assert decoder.pending_bytes == 0


def test_malformed_payload_is_reported_and_next_frame_decodes() -> None:
    bad_payload = b"/bad"
    bad = struct.pack(">I", len(bad_payload)) + bad_payload
    good_msg = ConsoleMessage("/eos/out/ping")

    decoder = FrameDecoder()
    out = decoder.feed(bad + encode_frame(good_msg))

    assert len(out) == 2
    assert isinstance(out[0], FrameError)
    assert out[0].length == 4
    assert out[0].payload == bad_payload
    assert out[1] == good_msg
    assert decoder.pending_bytes == 0


def test_empty_feed_returns_nothing() -> None:
    decoder = FrameDecoder()
    assert decoder.feed(b"") == []


def test_reset_drops_buffered_bytes() -> None:
    frame = encode_frame(ConsoleMessage("/eos/ping"))
    decoder = FrameDecoder()
    decoder.feed(frame[:5])
    decoder.reset()

    assert decoder.pending_bytes == 0
    assert decoder.feed(frame) == [ConsoleMessage("/eos/ping")]


def test_console_message_arg_default() -> None:
    msg = ConsoleMessage("/eos/out/get/cue/1/2", ("1", "2"))
    assert msg.arg(1) == "2"
    assert msg.arg(2) is None
    assert msg.arg(5, "") == ""


def test_oversized_length_header_raises_and_clears_buffer() -> None:
    good_msg = ConsoleMessage("/eos/out/show/name", ("Hamlet",))
    stream = encode_frame(good_msg) + struct.pack(">I", 0xFFFFFFFF) + b"junk"

    decoder = FrameDecoder(max_frame_size=1024)
    with pytest.raises(FrameTooLarge) as excinfo:
        decoder.feed(stream)

    assert excinfo.value.length == 0xFFFFFFFF
    assert excinfo.value.limit == 1024
    assert excinfo.value.frames == [good_msg]
    assert decoder.pending_bytes == 0


def test_frame_at_size_limit_is_accepted() -> None:
    frame = encode_frame(ConsoleMessage("/eos/ping"))
    decoder = FrameDecoder(max_frame_size=len(frame) - 4)

    assert decoder.feed(frame) == [ConsoleMessage("/eos/ping")]
