"""
EVEClient — per-connection task.

Reads messages off its socket and reports them to the connection manager
as ClientEvents. Listens on its command queue for instructions from the
manager. Any DecodeError ends the connection: a marshal stream can't be
resynchronised once a frame is bad.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum, auto

from eveproto.protocol.decoder import Message
from eveproto.protocol.errors import DecodeError
from .socket import EVEProtoSocket

log = logging.getLogger(__name__)


class ClientCommand(Enum):
    DISCONNECT = auto()


@dataclass
class ClientEvent:
    """Something that happened on one client connection."""
    client_id: int
    peer: str
    message: Message | None = None
    error: DecodeError | None = None
    closed: bool = False


class EVEClient:
    def __init__(
        self,
        client_id: int,
        socket: EVEProtoSocket,
        commands: asyncio.Queue[ClientCommand],
        events: asyncio.Queue[ClientEvent],
    ):
        self.client_id = client_id
        self.socket = socket
        self.commands = commands
        self.events = events
        self.peer = socket.peer

    def _event(self, **kwargs) -> ClientEvent:
        return ClientEvent(client_id=self.client_id, peer=self.peer, **kwargs)

    async def _watch_commands(self) -> None:
        while True:
            command = await self.commands.get()
            if command is ClientCommand.DISCONNECT:
                log.debug("Client %d: disconnect requested", self.client_id)
                self.socket.abort()
                return

    async def run(self) -> None:
        watcher = asyncio.create_task(self._watch_commands())
        try:
            while True:
                try:
                    message = await self.socket.read_packet()
                except DecodeError as e:
                    log.warning("Client %d (%s): dropping connection: %s",
                                self.client_id, self.peer, e)
                    await self.events.put(self._event(error=e))
                    return
                except ConnectionError as e:
                    log.info("Client %d (%s): connection lost: %s", self.client_id, self.peer, e)
                    return
                if message is None:
                    return
                await self.events.put(self._event(message=message))
        finally:
            watcher.cancel()
            await self.socket.close()
            await self.events.put(self._event(closed=True))
            log.debug("Client %d (%s) closed", self.client_id, self.peer)
