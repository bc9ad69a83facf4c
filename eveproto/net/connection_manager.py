"""
Client Connection Manager — owns every live EVEClient.

Each client gets its own bounded command queue. Events from all clients
fan in to one bounded event queue that the application drains with
next_event(). A slow consumer backs up the event queue, which in turn
pauses the client readers.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass

from .client import ClientCommand, ClientEvent, EVEClient
from .socket import EVEProtoSocket

log = logging.getLogger(__name__)


@dataclass
class TrackedClient:
    client_id: int
    peer: str
    commands: asyncio.Queue[ClientCommand]
    task: asyncio.Task


class ClientConnectionManager:
    def __init__(
        self,
        command_queue_size: int = 12,
        event_queue_size: int = 48,
        timeout_graceful_shutdown: float = 5.0,
    ):
        self.command_queue_size = command_queue_size
        self.timeout_graceful_shutdown = timeout_graceful_shutdown
        self.events: asyncio.Queue[ClientEvent] = asyncio.Queue(maxsize=event_queue_size)
        self.clients: dict[int, TrackedClient] = {}
        self._ids = itertools.count(1)

    def track(self, socket: EVEProtoSocket) -> TrackedClient:
        """Start a client task for a freshly accepted connection."""
        client_id = next(self._ids)
        commands: asyncio.Queue[ClientCommand] = asyncio.Queue(maxsize=self.command_queue_size)
        client = EVEClient(client_id, socket, commands, self.events)
        task = asyncio.create_task(client.run(), name=f"eve-client-{client_id}")
        tracked = TrackedClient(client_id, client.peer, commands, task)
        self.clients[client_id] = tracked
        task.add_done_callback(lambda t, cid=client_id: self._on_done(cid, t))
        log.info("Client %d connected from %s (%d active)", client_id, client.peer, len(self.clients))
        return tracked

    def _on_done(self, client_id: int, task: asyncio.Task) -> None:
        self.clients.pop(client_id, None)
        if task.cancelled():
            log.debug("Client %d task cancelled", client_id)
            return
        exc = task.exception()
        if exc is not None:
            log.error("Client %d task failed", client_id, exc_info=exc)

    @property
    def active(self) -> int:
        return len(self.clients)

    async def next_event(self) -> ClientEvent:
        return await self.events.get()

    async def send_command(self, client_id: int, command: ClientCommand) -> bool:
        tracked = self.clients.get(client_id)
        if tracked is None:
            return False
        await tracked.commands.put(command)
        return True

    async def broadcast(self, command: ClientCommand) -> int:
        """Send a command to every connected client. Returns how many got it."""
        targets = list(self.clients.values())
        for tracked in targets:
            await tracked.commands.put(command)
        return len(targets)

    def _drain_events(self) -> None:
        while not self.events.empty():
            self.events.get_nowait()

    async def shutdown(self) -> None:
        """Disconnect everyone and wait for their tasks to finish."""
        tasks = [t.task for t in self.clients.values()]
        if not tasks:
            return
        log.info("Disconnecting %d client(s)", len(tasks))
        for tracked in list(self.clients.values()):
            try:
                tracked.commands.put_nowait(ClientCommand.DISCONNECT)
            except asyncio.QueueFull:
                tracked.task.cancel()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_graceful_shutdown
        pending = set(tasks)
        # nobody may be reading events any more; keep the queue from blocking exits
        while pending and loop.time() < deadline:
            self._drain_events()
            _, pending = await asyncio.wait(pending, timeout=0.1)

        if pending:
            log.error("Cancel %d client task(s), graceful shutdown timed out", len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
