"""
Message Reassembler — rebuild marshal messages from TCP segments.

TCP can split or merge messages across segments. Every message on the
wire is [len:u32le][body:len], so per stream we:
1. Buffer incoming payload bytes
2. Peek the length prefix, wait until the whole message is buffered
3. Emit prefix + body, ready for decoder.decode_message()

Streams are keyed by (client endpoint, direction) so one reassembler can
follow several game clients at once. There is no way to find the next
message boundary after a bogus length, so an oversize prefix marks the
stream broken and its later data is dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from eveproto.protocol.decoder import DEFAULT_CONFIG, LENGTH_PREFIX_SIZE
from eveproto.protocol.errors import PayloadTooLargeError
from .capture import EVEPacket

log = logging.getLogger(__name__)

StreamKey = tuple[str, str]  # (client endpoint, direction)
MessageCallback = Callable[[StreamKey, bytes], None]


@dataclass
class StreamBuffer:
    """Buffer for one direction of one TCP connection."""
    key: StreamKey
    buffer: bytearray = field(default_factory=bytearray)
    segment_count: int = 0
    messages_emitted: int = 0
    broken: bool = False

    def append(self, data: bytes) -> None:
        self.buffer.extend(data)
        self.segment_count += 1

    def consume(self, n: int) -> bytes:
        data = bytes(self.buffer[:n])
        del self.buffer[:n]
        return data

    def peek_length(self) -> int | None:
        if len(self.buffer) < LENGTH_PREFIX_SIZE:
            return None
        return int.from_bytes(self.buffer[:LENGTH_PREFIX_SIZE], "little")

    @property
    def size(self) -> int:
        return len(self.buffer)


class MessageReassembler:
    """Split TCP payload streams into length-prefixed marshal messages."""

    def __init__(self, max_message_size: int = DEFAULT_CONFIG.max_payload_size):
        self.max_message_size = max_message_size
        self.streams: dict[StreamKey, StreamBuffer] = {}
        self.callbacks: list[MessageCallback] = []

    def on_message(self, callback: MessageCallback) -> None:
        """Register callback for complete messages. Args: (stream_key, data)."""
        self.callbacks.append(callback)

    def feed(self, pkt: EVEPacket) -> None:
        """Feed a captured segment. Raises PayloadTooLargeError once per
        stream when it sees a length prefix over the limit."""
        key = (pkt.client_endpoint, pkt.direction)
        stream = self.streams.get(key)
        if stream is None:
            stream = self.streams[key] = StreamBuffer(key)
        if stream.broken:
            return
        stream.append(pkt.payload)
        self._try_extract(stream)

    def _try_extract(self, stream: StreamBuffer) -> None:
        while True:
            body_len = stream.peek_length()
            if body_len is None:
                return
            if body_len > self.max_message_size:
                stream.broken = True
                stream.buffer.clear()
                log.error(
                    "Stream %s:%s declared %d byte message (limit %d), dropping stream",
                    stream.key[0], stream.key[1], body_len, self.max_message_size,
                )
                raise PayloadTooLargeError(
                    f"Declared length {body_len} exceeds limit {self.max_message_size}"
                )
            total = LENGTH_PREFIX_SIZE + body_len
            if stream.size < total:
                return  # need more data
            self._emit(stream, stream.consume(total))

    def _emit(self, stream: StreamBuffer, data: bytes) -> None:
        stream.messages_emitted += 1
        for cb in self.callbacks:
            try:
                cb(stream.key, data)
            except Exception:
                log.exception("Message callback failed for stream %s", stream.key)

    def reset(self, key: StreamKey) -> None:
        """Forget a stream, e.g. after its connection closed."""
        self.streams.pop(key, None)

    def stats(self) -> dict:
        return {
            f"{client} {direction}": {
                "buffered": s.size,
                "tcp_segments": s.segment_count,
                "messages": s.messages_emitted,
                "broken": s.broken,
            }
            for (client, direction), s in self.streams.items()
        }
