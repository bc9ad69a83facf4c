"""
EVEServer — TCP listener for EVE-protocol clients.

Accepts connections, wraps each in an EVEProtoSocket and hands it to the
ClientConnectionManager. The server itself has no application logic;
consumers read decoded messages from manager.next_event().
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from eveproto.protocol.decoder import DecoderConfig
from .connection_manager import ClientConnectionManager
from .socket import EVEProtoSocket

log = logging.getLogger(__name__)


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    """Interface to bind."""

    port: int = 26000
    """TCP port. 0 picks a free one."""

    backlog: int = 100
    """Maximum number of queued connections."""

    command_queue_size: int = 12
    """Per-client capacity of the manager -> client command queue."""

    event_queue_size: int = 48
    """Capacity of the shared client -> manager event queue."""

    timeout_graceful_shutdown: float = 5.0
    """Seconds to wait for clients to close before cancelling them."""

    decoder: DecoderConfig = field(default_factory=DecoderConfig)
    """Decoder settings applied to every connection."""


class EVEServer:
    def __init__(self, config: ServerConfig | None = None):
        self.config = config or ServerConfig()
        self.manager = ClientConnectionManager(
            command_queue_size=self.config.command_queue_size,
            event_queue_size=self.config.event_queue_size,
            timeout_graceful_shutdown=self.config.timeout_graceful_shutdown,
        )
        self._server: asyncio.AbstractServer | None = None

    async def _on_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        socket = EVEProtoSocket(reader, writer, self.config.decoder)
        log.debug("Got connection from %s", socket.peer)
        self.manager.track(socket)

    async def start(self) -> None:
        self._server = await asyncio.start_server(
            self._on_connection,
            host=self.config.host,
            port=self.config.port,
            backlog=self.config.backlog,
        )
        log.info("Listening on %s:%d", self.config.host, self.port)

    @property
    def port(self) -> int:
        """Bound port, useful when configured with port 0."""
        if self._server is None or not self._server.sockets:
            return self.config.port
        return self._server.sockets[0].getsockname()[1]

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        assert self._server is not None
        await self._server.serve_forever()

    async def shutdown(self) -> None:
        if self._server is not None:
            self._server.close()
        await self.manager.shutdown()
        if self._server is not None:
            await self._server.wait_closed()
            self._server = None
        log.info("Server stopped")
