"""Tests for single-value decoding, one opcode at a time."""

import struct

import pytest

from eveproto.protocol.decoder import DataReader, DecoderConfig, MarshalDecoder, decode_value
from eveproto.protocol.errors import (
    DecodeError,
    InvalidTextError,
    NestingDepthError,
    StringTableIndexError,
    TruncatedError,
    UnhashableKeyError,
    UnknownOpcodeError,
    VarIntWidthError,
)
from eveproto.protocol.opcodes import VAR_INTEGER_WIDTHS, Opcode
from eveproto.protocol.string_table import STRING_TABLE
from eveproto.protocol.values import (
    BigInt, Byte, Dict, Float, HashableValue, Integer, NoneValue, Object, OwnedString,
    Short, String, SubStream, Tuple,
)

from conftest import body, dict_of, short_string, size, table_string


OPCODE_CASES = [
    ("none", b"\x01", NoneValue(), 1),
    ("long_long", b"\x03" + struct.pack("<q", -(2**40)), Integer(-(2**40)), 9),
    ("long", b"\x04" + struct.pack("<i", -5), Integer(-5), 5),
    ("signed_short", b"\x05" + struct.pack("<h", -300), Short(-300), 3),
    ("byte", b"\x06\xff", Byte(255), 2),
    ("minus_one", b"\x07", Integer(-1), 1),
    ("zero", b"\x08", Integer(0), 1),
    ("one", b"\x09", Integer(1), 1),
    ("real", b"\x0a" + struct.pack("<d", 1.5), Float(1.5), 9),
    ("real_zero", b"\x0b", Float(0.0), 1),
    ("short_string", b"\x10\x03abc", String(b"abc"), 5),
    ("long_string", b"\x13\xff" + struct.pack("<I", 3) + b"abc", String(b"abc"), 8),
    ("empty_string", b"\x10\x00", String(b""), 2),
    ("table_string", table_string("age"), String(b"age"), 2),
    ("ucs2", b"\x12\x02h\x00i\x00", OwnedString("hi"), 6),
    ("utf8", b"\x2e\x03\xe2\x82\xac", OwnedString("€"), 5),
    ("tuple", b"\x14\x02\x08\x09", Tuple((Integer(0), Integer(1))), 4),
    ("empty_tuple", b"\x24", Tuple(()), 1),
    ("one_tuple", b"\x25\x01", Tuple((NoneValue(),)), 2),
    ("two_tuple", b"\x2c\x08\x09", Tuple((Integer(0), Integer(1))), 3),
    ("dict", b"\x16\x01\x09\x10\x01a",
     Dict({HashableValue(String(b"a")): Integer(1)}), 6),
    ("object", b"\x17\x10\x01x\x24", Object(String(b"x"), Tuple(())), 5),
    ("substream", b"\x2b\x06\x7e\x00\x00\x00\x00\x08", SubStream((Integer(0),)), 8),
    ("var_int_4", b"\x2f\x04" + struct.pack("<i", -2), BigInt(-2), 6),
    ("var_int_8", b"\x2f\x08" + struct.pack("<q", 2**40), BigInt(2**40), 10),
    ("var_int_16", b"\x2f\x10" + (-(2**100)).to_bytes(16, "little", signed=True),
     BigInt(-(2**100)), 18),
]


@pytest.mark.parametrize(
    "data,expected,consumed",
    [case[1:] for case in OPCODE_CASES],
    ids=[case[0] for case in OPCODE_CASES],
)
def test_opcode_table(data, expected, consumed):
    trailer = b"\xee\xee"
    rest, value = decode_value(data + trailer)
    assert value == expected
    assert type(value) is type(expected)
    assert len(data) + len(trailer) - len(rest) == consumed
    assert bytes(rest) == trailer


def test_every_opcode_has_a_case():
    covered = {case[1][0] for case in OPCODE_CASES}
    assert covered == {op.value for op in Opcode}


# ---- Concrete scenarios ----

def test_zero_literal():
    _, value = decode_value(b"\x08")
    assert value == Integer(0)


def test_byte_42():
    _, value = decode_value(b"\x06\x2a")
    assert value == Byte(42)


def test_short_string_abc():
    _, value = decode_value(b"\x10\x03abc")
    assert isinstance(value, String)
    assert bytes(value) == b"abc"


def test_two_tuple_zero_one():
    _, value = decode_value(b"\x2c\x08\x09")
    assert value == Tuple([Integer(0), Integer(1)])


# ---- Strings ----

def test_string_is_zero_copy():
    data = bytearray(b"\x10\x03abc")
    _, value = decode_value(data)
    assert isinstance(value.data, memoryview)
    assert value.data.obj is data


def test_string_table_bounds():
    last = len(STRING_TABLE) - 1
    _, value = decode_value(bytes([0x11, last]))
    assert bytes(value) == STRING_TABLE[last]

    with pytest.raises(StringTableIndexError) as exc:
        decode_value(bytes([0x11, len(STRING_TABLE)]))
    assert exc.value.offset == 1


def test_ucs2_surrogate_rejected():
    with pytest.raises(InvalidTextError):
        decode_value(b"\x12\x01\x00\xd8")


def test_ucs2_non_ascii():
    _, value = decode_value(b"\x12\x02" + "é中".encode("utf-16-le"))
    assert value == OwnedString("é中")


def test_utf8_invalid():
    with pytest.raises(InvalidTextError):
        decode_value(b"\x2e\x02\xc3\x28")


# ---- Var-int ----

def test_var_int_one_byte_reads_extra_unsigned_byte():
    rest, value = decode_value(b"\x2f\x01\x00\xfe\x09")
    assert value == BigInt(0xFE)
    assert bytes(rest) == b"\x09"


@pytest.mark.parametrize("width", sorted(VAR_INTEGER_WIDTHS))
def test_var_int_accepted_widths(width):
    # one trailing byte carries the value for width 1
    data = b"\x2f" + bytes([width]) + b"\xff" * width + b"\x05"
    rest, value = decode_value(data)
    expected = 5 if width == 1 else -1
    assert value == BigInt(expected)
    assert len(rest) == (0 if width == 1 else 1)


@pytest.mark.parametrize("width", [0, 2, 3, 5, 9, 17])
def test_var_int_bad_width(width):
    with pytest.raises(VarIntWidthError):
        decode_value(b"\x2f" + bytes([width]) + b"\x00" * width)


# ---- Dicts ----

def test_dict_value_then_key_on_wire():
    data = dict_of((short_string(b"key"), b"\x06\x07"))
    _, value = decode_value(data)
    assert value[String(b"key")] == Byte(7)


def test_dict_duplicate_keys_later_wins():
    # Byte(5) and Integer(5) are the same key
    data = dict_of(
        (b"\x06\x05", short_string(b"first")),
        (b"\x04" + struct.pack("<i", 5), short_string(b"second")),
    )
    _, value = decode_value(data)
    assert len(value) == 1
    assert value[Integer(5)] == String(b"second")


def test_dict_string_and_owned_string_keys_collide():
    data = dict_of((short_string(b"id"), b"\x08"), (b"\x2e\x02id", b"\x09"))
    _, value = decode_value(data)
    assert len(value) == 1
    assert value[OwnedString("id")] == Integer(1)


def test_dict_iterates_in_key_order():
    data = dict_of(
        (short_string(b"z"), b"\x08"),
        (b"\x0a" + struct.pack("<d", 2.5), b"\x08"),
        (b"\x01", b"\x08"),
        (b"\x06\x03", b"\x08"),
    )
    _, value = decode_value(data)
    assert [k.value for k in value.keys()] == [NoneValue(), Byte(3), Float(2.5), String(b"z")]


@pytest.mark.parametrize("key", [b"\x24", b"\x16\x00", b"\x17\x08\x08", b"\x2f\x04\x00\x00\x00\x00"])
def test_dict_unhashable_key(key):
    with pytest.raises(UnhashableKeyError):
        decode_value(b"\x16\x01\x08" + key)


# ---- Truncation ----

@pytest.mark.parametrize("data", [
    b"",
    b"\x03\x00\x00",
    b"\x04\x00",
    b"\x05\x00",
    b"\x06",
    b"\x0a\x00\x00\x00",
    b"\x10\x05ab",
    b"\x11",
    b"\x12\x02a\x00",
    b"\x14\x03\x08",
    b"\x16\x02\x08\x08",
    b"\x25",
    b"\x2c\x08",
    b"\x17\x08",
    b"\x2f\x04\x00",
    b"\x2f\x01\x00",
])
def test_truncated(data):
    with pytest.raises(TruncatedError):
        decode_value(data)


def test_huge_tuple_count_fails_early():
    with pytest.raises(TruncatedError) as exc:
        decode_value(b"\x14\xff\xff\xff\xff\x7f\x08")
    assert exc.value.offset == 1


def test_truncated_error_reports_offset():
    with pytest.raises(TruncatedError) as exc:
        decode_value(b"\x2c\x08\x04\x00")
    assert exc.value.offset == 3


# ---- Unknown opcodes ----

@pytest.mark.parametrize("tag", [0x00, 0x02, 0x0C, 0x15, 0x7E, 0xFF])
def test_unknown_opcode(tag):
    with pytest.raises(UnknownOpcodeError) as exc:
        decode_value(bytes([tag]))
    assert exc.value.opcode == tag
    assert exc.value.offset == 0


def test_unknown_opcode_nested():
    with pytest.raises(UnknownOpcodeError) as exc:
        decode_value(b"\x14\x02\x08\x00")
    assert exc.value.offset == 3


# ---- Nesting ----

def _nested_one_tuples(depth: int) -> bytes:
    return b"\x25" * depth + b"\x08"


def test_depth_limit():
    decoder = MarshalDecoder(DecoderConfig(max_depth=3))
    value = decoder.decode_value(DataReader(_nested_one_tuples(3)))
    assert isinstance(value, Tuple)

    with pytest.raises(NestingDepthError):
        decoder.decode_value(DataReader(_nested_one_tuples(4)))


def test_default_depth_limit_stops_deep_input():
    with pytest.raises(NestingDepthError):
        decode_value(_nested_one_tuples(10_000))


def test_substream_counts_towards_depth():
    inner = b"\x2b" + size(len(body(b"\x25\x08"))) + body(b"\x25\x08")
    decoder = MarshalDecoder(DecoderConfig(max_depth=1))
    with pytest.raises(NestingDepthError):
        decoder.decode_value(DataReader(inner))


def test_errors_share_base_class():
    for exc_type in (TruncatedError, UnknownOpcodeError, NestingDepthError, InvalidTextError):
        assert issubclass(exc_type, DecodeError)
