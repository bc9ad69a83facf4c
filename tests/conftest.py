"""Shared fixtures and wire builders for eveproto tests."""

import struct

import pytest

from eveproto.protocol.string_table import index_of
from eveproto.sniffer.capture import EVEPacket

SERVER_IP = "87.237.38.200"
CLIENT_IP = "192.168.1.100"


# ---- Wire builders ----

def size(n: int) -> bytes:
    """Escape-coded size field."""
    if n < 0xFF:
        return bytes([n])
    return b"\xff" + struct.pack("<I", n)


def body(*values: bytes, save_count: int = 0) -> bytes:
    """Marker + save counter + encoded values (no length prefix)."""
    return b"\x7e" + struct.pack("<I", save_count) + b"".join(values)


def envelope(*values: bytes, save_count: int = 0) -> bytes:
    """Full framed message: [len:u32le] + body."""
    data = body(*values, save_count=save_count)
    return struct.pack("<I", len(data)) + data


def short_string(text: bytes) -> bytes:
    return b"\x10" + size(len(text)) + text


def table_string(text: str) -> bytes:
    return b"\x11" + bytes([index_of(text)])


def long_int(n: int) -> bytes:
    return b"\x04" + struct.pack("<i", n)


def tuple_of(*values: bytes) -> bytes:
    return b"\x14" + size(len(values)) + b"".join(values)


def dict_of(*pairs: tuple[bytes, bytes]) -> bytes:
    """Encoded dict from (key, value) pairs; the wire wants value first."""
    return b"\x16" + size(len(pairs)) + b"".join(v + k for k, v in pairs)


def substream(*values: bytes, save_count: int = 0) -> bytes:
    data = body(*values, save_count=save_count)
    return b"\x2b" + size(len(data)) + data


NONE = b"\x01"
ZERO = b"\x08"
ONE = b"\x09"
MINUS_ONE = b"\x07"


def make_pkt(direction: str, payload: bytes, client_port: int = 54321) -> EVEPacket:
    return EVEPacket(
        timestamp=1000.0,
        direction=direction,
        src_ip=CLIENT_IP if direction == "C2S" else SERVER_IP,
        dst_ip=SERVER_IP if direction == "C2S" else CLIENT_IP,
        src_port=client_port if direction == "C2S" else 26000,
        dst_port=26000 if direction == "C2S" else client_port,
        payload=payload,
        seq=0,
        ack=0,
        flags="PA",
    )


# ---- Fixtures ----

@pytest.fixture
def call_req_message() -> bytes:
    """An S2C-style message: Object('macho.CallReq', (1, 'hello', {'age': 30}))."""
    return envelope(
        b"\x17"
        + table_string("macho.CallReq")
        + tuple_of(ONE, short_string(b"hello"), dict_of((table_string("age"), long_int(30)))),
        save_count=3,
    )


@pytest.fixture
def sample_c2s_packet(call_req_message) -> EVEPacket:
    return make_pkt("C2S", call_req_message)


@pytest.fixture
def sample_s2c_packet() -> EVEPacket:
    return make_pkt("S2C", envelope(ZERO, ONE, save_count=1))
