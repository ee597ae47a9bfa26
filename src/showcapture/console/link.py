from __future__ import annotations

import asyncio
from dataclasses import replace
import enum
import logging
import re
import time
from typing import Any, Awaitable, Callable

from showcapture.config import ConsoleConfig

from .framing import ConsoleMessage, DecodedFrame, FrameDecoder, FrameError, FrameTooLarge, encode_frame
from .reconnect import ReconnectPolicy
from .state import CueState, LinkResult, LinkState, PendingCueResolution, PendingCueSlot


logger = logging.getLogger(__name__)


CueObserver = Callable[[CueState], None]
OpenConnection = Callable[[str, int], Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]]
Sleep = Callable[[float], Awaitable[Any]]

READ_CHUNK_SIZE = 4096


class MessageKind(str, enum.Enum):
    SHOW_NAME = "show_name"
    ACTIVE_CUE = "active_cue"
    ACTIVE_CUE_TEXT = "active_cue_text"
    CUELIST = "cuelist"
    CUE = "cue"
    PING = "ping"
    UNKNOWN = "unknown"


# Order matters: the text notification must win over the list/number form.
_ADDRESS_PATTERNS: tuple[tuple[MessageKind, re.Pattern[str]], ...] = (
    (MessageKind.SHOW_NAME, re.compile(r"^/eos/out/show/name$")),
    (MessageKind.ACTIVE_CUE_TEXT, re.compile(r"^/eos/out/active/cue/text$")),
    (MessageKind.ACTIVE_CUE, re.compile(r"^/eos/out/active/cue/(?P<list>[^/]+)/(?P<number>[^/]+)$")),
    (
        MessageKind.CUELIST,
        re.compile(r"^/eos/out/get/cuelist/(?P<list>(?!count$)[^/]+)(?:/list/\d+/\d+)?$"),
    ),
    (
        MessageKind.CUE,
        re.compile(
            r"^/eos/out/get/cue/(?P<list>[^/]+)/(?P<number>(?!count$)[^/]+)(?:/\d+)?(?:/list/\d+/\d+)?$"
        ),
    ),
    (MessageKind.PING, re.compile(r"^/eos/out/ping$")),
)

# "<list>/<number> <label> <progress>%"
_CUE_TEXT_RE = re.compile(r"^\s*\S+/\S+(?:\s+(?P<label>.*?))?\s+\d+(?:\.\d+)?%\s*$")


def classify(address: str) -> tuple[MessageKind, dict[str, str]]:
    for kind, pattern in _ADDRESS_PATTERNS:
        m = pattern.match(address)
        if m is not None:
            return kind, m.groupdict()
    return MessageKind.UNKNOWN, {}


def parse_cue_text(text: str) -> str:
    m = _CUE_TEXT_RE.match(text)
    if m is None:
        return text
    return m.group("label") or ""


def subscribe_message(enabled: bool) -> ConsoleMessage:
    return ConsoleMessage("/eos/subscribe", (1 if enabled else 0,))


def ping_message() -> ConsoleMessage:
    return ConsoleMessage("/eos/ping")


def show_name_request() -> ConsoleMessage:
    return ConsoleMessage("/eos/get/show/name")


def cuelist_request(cue_list: str) -> ConsoleMessage:
    return ConsoleMessage(f"/eos/get/cuelist/{cue_list}")


def cue_request(cue_list: str, cue_number: str) -> ConsoleMessage:
    return ConsoleMessage(f"/eos/get/cue/{cue_list}/{cue_number}")


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


class ConsoleLink:
    """Client side of the console's OSC-over-TCP link.

    Owns the socket and every timer tied to it (reader, keepalive,
    reconnection and delayed metadata lookups). Cue metadata is mirrored
    into an immutable ``CueState`` snapshot; each change is pushed to the
    observers registered with ``subscribe``.

    Send failures are logged and reported as ``False``; they never raise and
    never change the link state. Only a socket close, a read error or a frame
    header beyond ``max_frame_bytes`` does.
    """

    def __init__(
        self,
        config: ConsoleConfig,
        open_connection: OpenConnection | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config
        self._open_connection = open_connection or asyncio.open_connection
        self._clock = clock
        # Used for the waits between reconnection attempts.
        self._sleep = sleep

        self._state = LinkState.DISCONNECTED
        self._cue = CueState()
        self._pending = PendingCueSlot()
        self._decoder = FrameDecoder(max_frame_size=config.max_frame_bytes)
        self._observers: list[CueObserver] = []
        self._reconnect = ReconnectPolicy(
            fast_seconds=config.reconnect_fast_seconds,
            slow_seconds=config.reconnect_slow_seconds,
            tier_seconds=config.reconnect_tier_seconds,
        )

        self._writer: asyncio.StreamWriter | None = None
        self._read_task: asyncio.Task[None] | None = None
        self._keepalive_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._lookup_tasks: set[asyncio.Task[None]] = set()

        self._handlers: dict[MessageKind, Callable[[ConsoleMessage, dict[str, str]], None]] = {
            MessageKind.SHOW_NAME: self._on_show_name,
            MessageKind.ACTIVE_CUE: self._on_active_cue,
            MessageKind.ACTIVE_CUE_TEXT: self._on_active_cue_text,
            MessageKind.CUELIST: self._on_cuelist,
            MessageKind.CUE: self._on_cue,
            MessageKind.PING: self._on_ping,
        }

    @property
    def state(self) -> LinkState:
        return self._state

    @property
    def cue_state(self) -> CueState:
        return self._cue

    @property
    def configured(self) -> bool:
        return bool(self.config.host)

    @property
    def pending_resolution(self) -> PendingCueResolution | None:
        return self._pending.current

    @property
    def reconnect_policy(self) -> ReconnectPolicy:
        return self._reconnect

    def snapshot(self) -> CueState:
        return self._cue

    def subscribe(self, observer: CueObserver) -> Callable[[], None]:
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    # ------------------------------------------------------------------ lifecycle

    async def connect(self) -> LinkResult:
        if self._writer is not None:
            return LinkResult(False, "already connected")
        if self._state is LinkState.CONNECTING:
            return LinkResult(False, "connection already in progress")
        if not self.configured:
            return LinkResult(False, "console address not configured")
        return await self._open()

    async def disconnect(self) -> LinkResult:
        if self._writer is None and self._state is LinkState.DISCONNECTED:
            return LinkResult(False, "not connected")

        self._stop_keepalive()
        self._cancel_reconnect()
        self._reconnect.reset()
        self._cancel_lookups()
        read_task, self._read_task = self._read_task, None
        if read_task is not None:
            read_task.cancel()

        writer = self._writer
        if writer is not None:
            await self.send(subscribe_message(False))
            self._writer = None
            await self._close_writer(writer)

        self._state = LinkState.DISCONNECTED
        self._decoder.reset()
        self._cue = CueState()
        self._pending.clear()
        logger.info("disconnected from console")
        self._notify()
        return LinkResult(True)

    async def _open(self) -> LinkResult:
        host = str(self.config.host)
        port = int(self.config.port)
        self._state = LinkState.CONNECTING
        logger.info("connecting to console %s:%s", host, port)

        try:
            reader, writer = await asyncio.wait_for(
                self._open_connection(host, port),
                timeout=self.config.connect_timeout_seconds,
            )
        except (OSError, asyncio.TimeoutError) as exc:
            reason = str(exc) or exc.__class__.__name__
            if self._state is LinkState.CONNECTING:
                self._state = LinkState.RECONNECTING if self._reconnect.active else LinkState.DISCONNECTED
            logger.warning("connect to console %s:%s failed: %s", host, port, reason)
            return LinkResult(False, f"connect to {host}:{port} failed: {reason}")

        if self._state is not LinkState.CONNECTING:
            # disconnect() ran while the socket was opening
            await self._close_writer(writer)
            return LinkResult(False, "connect cancelled")

        self._writer = writer
        self._decoder.reset()
        self._cancel_reconnect()
        self._reconnect.reset()
        self._state = LinkState.CONNECTED
        self._read_task = asyncio.create_task(self._read_loop(reader, writer), name="console-read")

        await self.send(subscribe_message(True))
        await self.send(ping_message())
        await self.send(show_name_request())
        if self._writer is not writer:
            return LinkResult(False, "connection lost during handshake")

        self._keepalive_task = asyncio.create_task(self._keepalive_loop(), name="console-keepalive")
        logger.info("connected to console %s:%s", host, port)
        self._update(connected=True)
        return LinkResult(True)

    async def _read_loop(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        reason = "closed by console"
        try:
            while True:
                chunk = await reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                self.receive(chunk)
        except FrameTooLarge as exc:
            reason = f"stream desynchronised: {exc}"
        except OSError as exc:
            reason = str(exc) or exc.__class__.__name__
        self._connection_lost(writer, reason)

    def _connection_lost(self, writer: asyncio.StreamWriter, reason: str) -> None:
        if self._writer is not writer:
            return

        logger.warning("console connection lost: %s", reason)
        self._writer = None
        self._read_task = None
        self._stop_keepalive()
        self._cancel_lookups()
        self._pending.clear()
        self._decoder.reset()
        writer.close()

        self._state = LinkState.RECONNECTING if self.configured else LinkState.DISCONNECTED
        self._update(connected=False)
        if self.configured:
            self._start_reconnect()

    async def _close_writer(self, writer: asyncio.StreamWriter) -> None:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as exc:
            logger.debug("console socket close: %s", exc)

    # ------------------------------------------------------------------ timers

    async def _keepalive_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.keepalive_seconds)
            await self.send(ping_message())

    def _stop_keepalive(self) -> None:
        task, self._keepalive_task = self._keepalive_task, None
        if task is not None:
            task.cancel()

    def _start_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect.begin(self._clock())
        self._reconnect_task = asyncio.create_task(self._reconnect_loop(), name="console-reconnect")

    async def _reconnect_loop(self) -> None:
        attempt = 0
        while True:
            delay = self._reconnect.next_delay(self._clock())
            await self._sleep(delay)
            attempt += 1
            result = await self._open()
            if result.ok:
                logger.info("reconnected to console after %s attempt(s)", attempt)
                return
            logger.info(
                "reconnect attempt %s failed after %.0fs: %s",
                attempt,
                self._reconnect.elapsed(self._clock()),
                result.error,
            )

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def _send_later(self, message: ConsoleMessage) -> None:
        task = asyncio.create_task(self._delayed_send(message))
        self._lookup_tasks.add(task)
        task.add_done_callback(self._lookup_tasks.discard)

    async def _delayed_send(self, message: ConsoleMessage) -> None:
        await asyncio.sleep(self.config.lookup_delay_seconds)
        await self.send(message)

    def _cancel_lookups(self) -> None:
        for task in list(self._lookup_tasks):
            task.cancel()
        self._lookup_tasks.clear()

    # ------------------------------------------------------------------ I/O

    async def send(self, message: ConsoleMessage) -> bool:
        writer = self._writer
        if writer is None:
            logger.debug("dropping %s: console not connected", message.address)
            return False
        try:
            writer.write(encode_frame(message))
            await writer.drain()
        except OSError as exc:
            logger.warning("send %s failed: %s", message.address, exc)
            return False
        return True

    def receive(self, data: bytes) -> None:
        """Feed raw socket bytes; raises ``FrameTooLarge`` after dispatching what preceded it."""
        if self._writer is None:
            return
        try:
            frames = self._decoder.feed(data)
        except FrameTooLarge as exc:
            self._dispatch_frames(exc.frames)
            raise
        self._dispatch_frames(frames)

    def _dispatch_frames(self, frames: list[DecodedFrame]) -> None:
        for frame in frames:
            if isinstance(frame, FrameError):
                continue
            self._dispatch(frame)

    def _dispatch(self, message: ConsoleMessage) -> None:
        kind, fields = classify(message.address)
        handler = self._handlers.get(kind)
        if handler is None:
            logger.debug("ignoring console message %s", message.address)
            return
        try:
            handler(message, fields)
        except Exception:
            logger.exception("failed handling console message %s", message.address)

    # ------------------------------------------------------------------ handlers

    def _on_show_name(self, message: ConsoleMessage, fields: dict[str, str]) -> None:
        self._update(show_name=_text(message.arg(0)))

    def _on_active_cue(self, message: ConsoleMessage, fields: dict[str, str]) -> None:
        cue_list = fields["list"]
        cue_number = fields["number"]
        self._update(cue_list=cue_list, cue_number=cue_number)

        superseded = self._pending.offer(PendingCueResolution(cue_list=cue_list, cue_number=cue_number))
        if superseded is not None:
            logger.debug(
                "cue lookup %s/%s superseded by %s/%s",
                superseded.cue_list,
                superseded.cue_number,
                cue_list,
                cue_number,
            )
        self._send_later(cuelist_request(cue_list))

    def _on_active_cue_text(self, message: ConsoleMessage, fields: dict[str, str]) -> None:
        self._update(cue_label=parse_cue_text(_text(message.arg(0))))

    def _on_cuelist(self, message: ConsoleMessage, fields: dict[str, str]) -> None:
        self._update(cue_list_name=_text(message.arg(2)))
        # Consumes whatever lookup is pending, even if it was created after
        # the request this response answers.
        pending = self._pending.take()
        if pending is not None and pending.cue_number:
            self._send_later(cue_request(pending.cue_list, pending.cue_number))

    def _on_cue(self, message: ConsoleMessage, fields: dict[str, str]) -> None:
        self._update(cue_label=_text(message.arg(2)))

    def _on_ping(self, message: ConsoleMessage, fields: dict[str, str]) -> None:
        return None

    # ------------------------------------------------------------------ observers

    def _update(self, **changes: Any) -> None:
        self._cue = replace(self._cue, **changes)
        self._notify()

    def _notify(self) -> None:
        snapshot = self._cue
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception:
                logger.exception("cue state observer failed")
