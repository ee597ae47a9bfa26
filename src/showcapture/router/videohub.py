from __future__ import annotations

import ipaddress
import logging
import socket

from showcapture.config import RouterConfig


logger = logging.getLogger(__name__)


class RouterError(RuntimeError):
    pass


def routing_command(input_id: int, output_id: int) -> bytes:
    """Videohub text-protocol block routing one output to one input (zero-based on the wire)."""
    return f"VIDEO OUTPUT ROUTING:\r\n{output_id - 1} {input_id - 1}\r\n\r\n".encode("ascii")


def is_valid_router_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


class VideohubRouter:
    def __init__(self, config: RouterConfig) -> None:
        self.config = config

    def __call__(self, input_id: int, output_id: int | None = None) -> None:
        self.switch(input_id, output_id)

    def switch(self, input_id: int, output_id: int | None = None) -> None:
        output_id = self.config.output if output_id is None else output_id
        host = self.config.host

        if not is_valid_router_host(host):
            raise RouterError(f"invalid router address: {host}")
        if not 1 <= input_id <= self.config.max_inputs or not 1 <= output_id <= self.config.max_outputs:
            raise RouterError(f"invalid routing input={input_id} output={output_id}")

        payload = routing_command(input_id, output_id)
        try:
            with socket.create_connection((host, self.config.port), timeout=self.config.timeout_seconds) as sock:
                sock.sendall(payload)
        except OSError as exc:
            raise RouterError(f"router {host}:{self.config.port} unreachable: {exc}") from exc

        logger.info("routed output %s to input %s (sent %s %s)", output_id, input_id, output_id - 1, input_id - 1)
