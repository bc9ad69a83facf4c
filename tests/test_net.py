"""Tests for the asyncio transport: socket framing, clients, server."""

import asyncio
import struct

import pytest

from eveproto.net import ClientCommand, EVEProtoSocket, EVEServer, ServerConfig
from eveproto.protocol.decoder import DecoderConfig
from eveproto.protocol.errors import PayloadTooLargeError, TruncatedError, UnknownOpcodeError
from eveproto.protocol.values import Integer, String

from conftest import ONE, ZERO, body, envelope, short_string


class _Writer:
    """Just enough of StreamWriter for EVEProtoSocket."""

    def __init__(self):
        self.data = bytearray()
        self.closed = False

    def get_extra_info(self, name, default=None):
        return ("127.0.0.1", 4242) if name == "peername" else default

    def write(self, data):
        self.data.extend(data)

    async def drain(self):
        pass

    def close(self):
        self.closed = True

    async def wait_closed(self):
        pass


def _socket(data: bytes, config=None) -> EVEProtoSocket:
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    reader.feed_eof()
    return EVEProtoSocket(reader, _Writer(), config)


def _run(coro):
    return asyncio.run(asyncio.wait_for(coro, timeout=10))


# ---- EVEProtoSocket ----

def test_read_packets_until_eof():
    async def main():
        sock = _socket(envelope(ZERO, save_count=1) + envelope(short_string(b"hi")))
        first = await sock.read_packet()
        second = await sock.read_packet()
        third = await sock.read_packet()
        return first, second, third

    first, second, third = _run(main())
    assert first.values == (Integer(0),)
    assert first.save_count == 1
    assert second.values == (String(b"hi"),)
    assert third is None


def test_read_packet_partial_prefix():
    async def main():
        await _socket(b"\x05\x00").read_packet()

    with pytest.raises(TruncatedError):
        _run(main())


def test_read_packet_partial_body():
    async def main():
        await _socket(envelope(ZERO, ONE)[:-1]).read_packet()

    with pytest.raises(TruncatedError):
        _run(main())


def test_read_packet_oversize():
    async def main():
        sock = _socket(struct.pack("<I", 1 << 20), DecoderConfig(max_payload_size=1024))
        await sock.read_packet()

    with pytest.raises(PayloadTooLargeError):
        _run(main())


def test_write_packet_frames():
    async def main():
        sock = _socket(b"")
        await sock.write_packet(body(ZERO))
        return sock.writer.data

    assert bytes(_run(main())) == envelope(ZERO)


def test_peer():
    async def main():
        return _socket(b"").peer

    assert _run(main()) == "127.0.0.1:4242"


# ---- Server ----

def _local_config(**kwargs) -> ServerConfig:
    return ServerConfig(host="127.0.0.1", port=0, timeout_graceful_shutdown=2.0, **kwargs)


async def _connect(server: EVEServer):
    return await asyncio.open_connection("127.0.0.1", server.port)


def test_server_delivers_messages():
    async def main():
        server = EVEServer(_local_config())
        await server.start()
        try:
            reader, writer = await _connect(server)
            writer.write(envelope(ZERO, save_count=7) + envelope(ONE))
            await writer.drain()

            first = await server.manager.next_event()
            second = await server.manager.next_event()

            writer.close()
            await writer.wait_closed()
            closed = await server.manager.next_event()
            return first, second, closed
        finally:
            await server.shutdown()

    first, second, closed = _run(main())
    assert first.message.values == (Integer(0),)
    assert first.message.save_count == 7
    assert second.message.values == (Integer(1),)
    assert second.client_id == first.client_id
    assert closed.closed
    assert closed.message is None


def test_server_drops_client_on_bad_message():
    async def main():
        server = EVEServer(_local_config())
        await server.start()
        try:
            reader, writer = await _connect(server)
            writer.write(envelope(ZERO, b"\xfe"))
            await writer.drain()

            error_event = await server.manager.next_event()
            closed_event = await server.manager.next_event()
            eof = await reader.read()
            writer.close()
            return error_event, closed_event, eof
        finally:
            await server.shutdown()

    error_event, closed_event, eof = _run(main())
    assert isinstance(error_event.error, UnknownOpcodeError)
    assert closed_event.closed
    assert eof == b""


def test_broadcast_disconnect():
    async def main():
        server = EVEServer(_local_config())
        await server.start()
        try:
            conns = [await _connect(server) for _ in range(3)]
            for _, writer in conns:
                writer.write(envelope(ZERO))
                await writer.drain()
            for _ in conns:
                await server.manager.next_event()
            assert server.manager.active == 3

            sent = await server.manager.broadcast(ClientCommand.DISCONNECT)
            closed = [await server.manager.next_event() for _ in conns]
            eofs = [await reader.read() for reader, _ in conns]
            for _, writer in conns:
                writer.close()
            while server.manager.active:
                await asyncio.sleep(0.01)
            return sent, closed, eofs, server.manager.active
        finally:
            await server.shutdown()

    sent, closed, eofs, active = _run(main())
    assert sent == 3
    assert all(e.closed for e in closed)
    assert eofs == [b""] * 3
    assert active == 0


def test_shutdown_disconnects_clients():
    async def main():
        server = EVEServer(_local_config())
        await server.start()
        reader, writer = await _connect(server)
        writer.write(envelope(ZERO))
        await writer.drain()
        await server.manager.next_event()

        await server.shutdown()
        eof = await reader.read()
        writer.close()
        return eof, server.manager.active

    eof, active = _run(main())
    assert eof == b""
    assert active == 0


def test_server_config_defaults():
    config = ServerConfig()
    assert config.port == 26000
    assert config.command_queue_size == 12
    assert config.event_queue_size == 48
    assert config.decoder.max_depth == 64
