"""
EVEProtoSocket — one TCP connection speaking length-prefixed marshal.

Reads exactly one message per call, [len:u32le][body], and hands the
whole frame to the decoder so the envelope checks still apply. Writes
take bytes that are already marshal-encoded; this package doesn't encode.
"""

from __future__ import annotations

import asyncio
import logging

from eveproto.protocol.decoder import LENGTH_PREFIX_SIZE, DecoderConfig, MarshalDecoder, Message
from eveproto.protocol.errors import PayloadTooLargeError, TruncatedError

log = logging.getLogger(__name__)


class EVEProtoSocket:
    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        config: DecoderConfig | None = None,
    ):
        self.reader = reader
        self.writer = writer
        self.decoder = MarshalDecoder(config)

    @property
    def peer(self) -> str:
        peername = self.writer.get_extra_info("peername")
        if not peername:
            return "?"
        return f"{peername[0]}:{peername[1]}"

    async def read_packet(self) -> Message | None:
        """Read and decode the next message. None on a clean EOF.

        Raises DecodeError on a bad message or a connection that closes
        halfway through one.
        """
        try:
            prefix = await self.reader.readexactly(LENGTH_PREFIX_SIZE)
        except asyncio.IncompleteReadError as e:
            if not e.partial:
                return None
            raise TruncatedError(
                f"Connection closed inside length prefix ({len(e.partial)} bytes)", offset=0
            ) from e

        length = int.from_bytes(prefix, "little")
        if length > self.decoder.config.max_payload_size:
            raise PayloadTooLargeError(
                f"Declared length {length} exceeds limit {self.decoder.config.max_payload_size}",
                offset=0,
            )
        try:
            body = await self.reader.readexactly(length)
        except asyncio.IncompleteReadError as e:
            raise TruncatedError(
                f"Connection closed after {len(e.partial)} of {length} body bytes",
                offset=LENGTH_PREFIX_SIZE + len(e.partial),
            ) from e

        log.debug("Read %d byte message from %s", length, self.peer)
        return self.decoder.decode_message(prefix + body)

    async def write_packet(self, raw: bytes) -> None:
        """Send pre-encoded marshal bytes with a length prefix."""
        self.writer.write(len(raw).to_bytes(LENGTH_PREFIX_SIZE, "little") + raw)
        await self.writer.drain()

    def abort(self) -> None:
        """Close the transport; a pending read_packet sees EOF."""
        self.writer.close()

    async def close(self) -> None:
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            log.debug("Error while closing %s: %s", self.peer, e)
