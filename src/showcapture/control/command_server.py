from __future__ import annotations

import asyncio
import logging

from showcapture.sequence import MAX_INPUT, MIN_INPUT, ProgressEvent, RunStatus, SequenceRunner


logger = logging.getLogger(__name__)


def parse_command_inputs(text: str) -> list[int]:
    """Parse "1,2,6" into [1, 2, 6], dropping non-numeric and out-of-range tokens."""
    inputs: list[int] = []
    for token in text.split(","):
        token = token.strip()
        if not token:
            continue
        try:
            value = int(token)
        except ValueError:
            continue
        if MIN_INPUT <= value <= MAX_INPUT:
            inputs.append(value)
    return inputs


class CommandServer:
    """Line-oriented TCP listener for control surfaces (macro keypads).

    Protocol: the client sends comma-separated input numbers terminated by a
    newline. Progress is streamed back one line per step; a run that does not
    complete ends with a line starting ``ERROR:``.

    Every line starts its own command task and the connection keeps reading,
    so a command that arrives while any run is active (including one started
    by the same client) is answered ``ERROR: sequence already running``.
    """

    def __init__(self, runner: SequenceRunner, host: str = "0.0.0.0", port: int = 9999) -> None:
        self.runner = runner
        self.host = host
        self.port = port
        self._server: asyncio.AbstractServer | None = None
        self._clients: dict[str, asyncio.StreamWriter] = {}
        self._client_counter = 0
        self._command_tasks: set[asyncio.Task[None]] = set()
        self._drain_locks: dict[asyncio.StreamWriter, asyncio.Lock] = {}

    @property
    def bound_port(self) -> int | None:
        if self._server is None or not self._server.sockets:
            return None
        return int(self._server.sockets[0].getsockname()[1])

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle_client, host=self.host, port=self.port)
        logger.info("command server listening on %s:%s", self.host, self.bound_port)

    async def stop(self) -> None:
        for task in list(self._command_tasks):
            task.cancel()
        for writer in list(self._clients.values()):
            writer.close()
        self._clients.clear()

        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        logger.info("command server stopped")

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._client_counter += 1
        client_id = f"client_{self._client_counter}"
        self._clients[client_id] = writer
        self._drain_locks[writer] = asyncio.Lock()
        peer = writer.get_extra_info("peername") or "unknown"
        logger.info("command client connected: %s from %s", client_id, peer)

        pending: set[asyncio.Task[None]] = set()
        try:
            while True:
                try:
                    line = await reader.readline()
                except ValueError:
                    await self._write_line(writer, "ERROR: command line too long")
                    break
                if not line:
                    break
                text = line.decode("ascii", errors="replace").strip()
                logger.info("command from %s: %r", client_id, text)
                task = self._start_command(text, writer)
                pending.add(task)
                task.add_done_callback(pending.discard)

            # Let commands already accepted finish replying on a half-closed socket.
            if pending:
                await asyncio.wait(set(pending))
        except OSError as exc:
            logger.info("command client %s dropped: %s", client_id, exc)
        finally:
            self._clients.pop(client_id, None)
            self._drain_locks.pop(writer, None)
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as exc:
                logger.debug("command client %s close: %s", client_id, exc)
            logger.info("command client disconnected: %s", client_id)

    def _start_command(self, text: str, writer: asyncio.StreamWriter) -> asyncio.Task[None]:
        task = asyncio.create_task(self.handle_command(text, writer), name="command")
        self._command_tasks.add(task)
        task.add_done_callback(self._command_done)
        return task

    def _command_done(self, task: asyncio.Task[None]) -> None:
        self._command_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("command failed: %s", exc, exc_info=exc)

    async def handle_command(self, text: str, writer: asyncio.StreamWriter) -> None:
        inputs = parse_command_inputs(text)
        if not inputs:
            await self._write_line(writer, f"ERROR: no valid inputs in command {text!r}")
            return

        def sink(event: ProgressEvent) -> None:
            self._queue_line(writer, event.message)

        outcome = await self.runner.run(inputs, progress=sink)
        if outcome.status is RunStatus.REJECTED:
            await self._write_line(writer, f"ERROR: {outcome.error}")
        elif outcome.status is not RunStatus.COMPLETED:
            await self._write_line(writer, f"ERROR: {outcome.summary()}")
        else:
            await self._drain(writer)

    def _queue_line(self, writer: asyncio.StreamWriter, text: str) -> None:
        if writer.is_closing():
            return
        writer.write((text + "\n").encode("utf-8", errors="replace"))

    async def _write_line(self, writer: asyncio.StreamWriter, text: str) -> None:
        self._queue_line(writer, text)
        await self._drain(writer)

    async def _drain(self, writer: asyncio.StreamWriter) -> None:
        if writer.is_closing():
            return
        lock = self._drain_locks.get(writer)
        try:
            if lock is None:
                await writer.drain()
                return
            async with lock:
                await writer.drain()
        except OSError as exc:
            logger.debug("command client write failed: %s", exc)
