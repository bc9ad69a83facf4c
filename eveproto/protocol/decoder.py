"""
Marshal Decoder — turn a framed message into a list of Values.

Wire layout of one message (little-endian throughout):

    [declared_len:u32][0x7e][save_count:u32][value][value]...

Each value is a tag byte (see opcodes.Opcode) followed by its payload.
Sizes and counts use the escape-coded size field:

    [n:u8]                 n in 0..254
    [0xff][n:u32le]        anything, including values that would fit in a byte

Decoding is a pure function of the input buffer: no I/O, no shared state,
safe to call from several threads on different buffers. Raw byte strings
are returned as memoryviews into the input, so the buffer must outlive them
(and a bytearray input can't be resized while they're alive).
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass

from . import string_table
from .errors import (
    DecodeError,
    EnvelopeError,
    InvalidTextError,
    LengthMismatchError,
    MarkerError,
    NestingDepthError,
    PayloadTooLargeError,
    TruncatedError,
    UnhashableKeyError,
    UnknownOpcodeError,
    VarIntWidthError,
)
from .opcodes import MESSAGE_MARKER, SIZE_ESCAPE, VAR_INTEGER_WIDTHS, Opcode
from .values import (
    BigInt,
    Byte,
    Dict,
    Float,
    HashableValue,
    Integer,
    NoneValue,
    Object,
    OwnedString,
    Short,
    String,
    SubStream,
    Tuple,
    Value,
    is_key_eligible,
)

log = logging.getLogger(__name__)

_I16 = struct.Struct("<h")
_I32 = struct.Struct("<i")
_U32 = struct.Struct("<I")
_I64 = struct.Struct("<q")
_F64 = struct.Struct("<d")

LENGTH_PREFIX_SIZE = 4


# ---- Configuration ----

@dataclass
class DecoderConfig:
    """Decoder limits and contract switches."""
    # Max nesting of tuples/dicts/objects/substreams before giving up
    max_depth: int = 64
    # True: every byte after the envelope must belong to a complete value.
    # False: a truncated value at the end of a body ends decoding quietly.
    strict: bool = True
    # Largest declared message length accepted by the framer
    max_payload_size: int = 16 * 1024 * 1024


DEFAULT_CONFIG = DecoderConfig()


@dataclass(frozen=True)
class Message:
    """A decoded message body."""
    save_count: int
    values: tuple[Value, ...] = ()

    def __post_init__(self):
        if not isinstance(self.values, tuple):
            object.__setattr__(self, "values", tuple(self.values))

    def __len__(self) -> int:
        return len(self.values)


# ---- Byte reader ----

class DataReader:
    """Zero-copy cursor over a byte buffer.

    `base_offset` shifts reported positions so errors inside a substream
    point at the right byte of the outer message.
    """

    __slots__ = ("_view", "_pos", "length", "base_offset")

    def __init__(self, data: bytes | bytearray | memoryview, base_offset: int = 0):
        view = memoryview(data)
        if view.format != "B" or view.ndim != 1:
            view = view.cast("B")
        self._view = view
        self._pos = 0
        self.length = len(view)
        self.base_offset = base_offset

    @property
    def position(self) -> int:
        return self._pos

    @property
    def offset(self) -> int:
        """Absolute offset of the cursor in the outermost buffer."""
        return self.base_offset + self._pos

    @property
    def remaining(self) -> int:
        return self.length - self._pos

    @property
    def eof(self) -> bool:
        return self._pos >= self.length

    def rest(self) -> memoryview:
        return self._view[self._pos:]

    def read_bytes(self, length: int) -> memoryview:
        if self._pos + length > self.length:
            raise TruncatedError(
                f"Need {length} bytes, only {self.remaining} left", offset=self.offset
            )
        start = self._pos
        self._pos += length
        return self._view[start:self._pos]

    def read_u8(self) -> int:
        if self._pos >= self.length:
            raise TruncatedError("Need 1 byte, none left", offset=self.offset)
        val = self._view[self._pos]
        self._pos += 1
        return val

    def read_i16(self) -> int:
        return self._unpack(_I16)

    def read_i32(self) -> int:
        return self._unpack(_I32)

    def read_u32(self) -> int:
        return self._unpack(_U32)

    def read_i64(self) -> int:
        return self._unpack(_I64)

    def read_f64(self) -> float:
        return self._unpack(_F64)

    def read_size(self) -> int:
        """Escape-coded size: one byte, or 0xff followed by a u32le."""
        first = self.read_u8()
        if first == SIZE_ESCAPE:
            return self.read_u32()
        return first

    def _unpack(self, packer: struct.Struct):
        if self._pos + packer.size > self.length:
            raise TruncatedError(
                f"Need {packer.size} bytes, only {self.remaining} left", offset=self.offset
            )
        (val,) = packer.unpack_from(self._view, self._pos)
        self._pos += packer.size
        return val


# ---- Decoder ----

class MarshalDecoder:
    """Recursive-descent decoder for marshal streams."""

    def __init__(self, config: DecoderConfig | None = None):
        self.config = config or DEFAULT_CONFIG

    # -- framing --

    def decode_message(self, data: bytes | bytearray | memoryview) -> Message:
        """Decode one full message including its u32 length prefix."""
        reader = DataReader(data)
        declared = reader.read_u32()
        log.debug("Message declared length %d", declared)
        if declared > self.config.max_payload_size:
            raise PayloadTooLargeError(
                f"Declared length {declared} exceeds limit {self.config.max_payload_size}",
                offset=0,
            )
        if declared != reader.remaining:
            raise LengthMismatchError(declared, reader.remaining)
        return self.decode_body(reader)

    def read_body_header(self, reader: DataReader) -> int:
        """Check the marker and return the save counter."""
        marker = reader.read_u8()
        if marker != MESSAGE_MARKER:
            raise MarkerError(
                f"Expected marker 0x{MESSAGE_MARKER:02x}, got 0x{marker:02x}",
                offset=reader.offset - 1,
            )
        return reader.read_u32()

    def decode_body(self, reader: DataReader, depth: int = 0) -> Message:
        """Decode marker, save counter and values until the reader is empty."""
        return self._decode_values(reader, self.read_body_header(reader), depth)

    def _decode_values(self, reader: DataReader, save_count: int, depth: int) -> Message:
        log.debug("Decoding %d byte body, save_count %d", reader.remaining, save_count)

        values: list[Value] = []
        while not reader.eof:
            start = reader.offset
            try:
                values.append(self.decode_value(reader, depth))
            except TruncatedError:
                # this reader ran out; substream headers raise EnvelopeError
                if self.config.strict:
                    raise
                log.warning(
                    "Ignoring %d trailing bytes at offset %d after %d values",
                    reader.base_offset + reader.length - start, start, len(values),
                )
                break
        return Message(save_count=save_count, values=values)

    # -- values --

    def decode_value(self, reader: DataReader, depth: int = 0) -> Value:
        if depth > self.config.max_depth:
            raise NestingDepthError(
                f"Nesting deeper than {self.config.max_depth}", offset=reader.offset
            )
        tag_offset = reader.offset
        tag = reader.read_u8()

        match Opcode.lookup(tag):
            case Opcode.NONE:
                return NoneValue()
            case Opcode.LONG_LONG:
                return Integer(reader.read_i64())
            case Opcode.LONG:
                return Integer(reader.read_i32())
            case Opcode.SIGNED_SHORT:
                return Short(reader.read_i16())
            case Opcode.BYTE:
                return Byte(reader.read_u8())
            case Opcode.INTEGER_MINUS_ONE:
                return Integer(-1)
            case Opcode.INTEGER_ZERO:
                return Integer(0)
            case Opcode.INTEGER_ONE:
                return Integer(1)
            case Opcode.REAL:
                return Float(reader.read_f64())
            case Opcode.REAL_ZERO:
                return Float(0.0)
            case Opcode.SHORT_STRING | Opcode.LONG_STRING:
                return self._decode_string(reader)
            case Opcode.STRING_TABLE_STRING:
                index_offset = reader.offset
                return String(string_table.lookup(reader.read_u8(), offset=index_offset))
            case Opcode.WSTRING_UCS2:
                return self._decode_wstring_ucs2(reader)
            case Opcode.WSTRING_UTF8:
                return self._decode_wstring_utf8(reader)
            case Opcode.TUPLE:
                return self._decode_tuple(reader, depth)
            case Opcode.EMPTY_TUPLE:
                return Tuple(())
            case Opcode.ONE_TUPLE:
                return Tuple((self.decode_value(reader, depth + 1),))
            case Opcode.TWO_TUPLE:
                first = self.decode_value(reader, depth + 1)
                second = self.decode_value(reader, depth + 1)
                return Tuple((first, second))
            case Opcode.DICT:
                return self._decode_dict(reader, depth)
            case Opcode.OBJECT:
                descriptor = self.decode_value(reader, depth + 1)
                arguments = self.decode_value(reader, depth + 1)
                return Object(descriptor, arguments)
            case Opcode.SUBSTREAM:
                return self._decode_substream(reader, depth)
            case Opcode.VAR_INTEGER:
                return self._decode_var_integer(reader)
            case None:
                log.error("Invalid opcode 0x%02x at offset %d", tag, tag_offset)
                raise UnknownOpcodeError(tag, offset=tag_offset)

    def _decode_string(self, reader: DataReader) -> String:
        size = reader.read_size()
        return String(reader.read_bytes(size))

    def _decode_wstring_ucs2(self, reader: DataReader) -> OwnedString:
        start = reader.offset
        count = reader.read_size()
        raw = reader.read_bytes(count * 2)
        for i, (unit,) in enumerate(struct.iter_unpack("<H", raw)):
            if 0xD800 <= unit <= 0xDFFF:
                log.warning("Surrogate code unit 0x%04x in UCS-2 string", unit)
                raise InvalidTextError(
                    f"UCS-2 string contains surrogate 0x{unit:04x} at unit {i}", offset=start
                )
        return OwnedString(raw.tobytes().decode("utf-16-le"))

    def _decode_wstring_utf8(self, reader: DataReader) -> OwnedString:
        start = reader.offset
        count = reader.read_size()
        raw = reader.read_bytes(count)
        try:
            return OwnedString(raw.tobytes().decode("utf-8"))
        except UnicodeDecodeError as e:
            log.warning("Error decoding UTF-8 string: %s", e)
            raise InvalidTextError(f"Invalid UTF-8 string: {e.reason}", offset=start) from e

    def _decode_tuple(self, reader: DataReader, depth: int) -> Tuple:
        count_offset = reader.offset
        count = reader.read_size()
        # every element needs at least its tag byte
        if count > reader.remaining:
            raise TruncatedError(
                f"Tuple of {count} items but only {reader.remaining} bytes left",
                offset=count_offset,
            )
        return Tuple(tuple(self.decode_value(reader, depth + 1) for _ in range(count)))

    def _decode_dict(self, reader: DataReader, depth: int) -> Dict:
        count_offset = reader.offset
        count = reader.read_size()
        if count * 2 > reader.remaining:
            raise TruncatedError(
                f"Dict of {count} pairs but only {reader.remaining} bytes left",
                offset=count_offset,
            )
        entries: dict[HashableValue, Value] = {}
        for _ in range(count):
            # value comes first on the wire
            value = self.decode_value(reader, depth + 1)
            key_offset = reader.offset
            key = self.decode_value(reader, depth + 1)
            if not is_key_eligible(key):
                raise UnhashableKeyError(
                    f"{type(key).__name__} is not a valid dict key", offset=key_offset
                )
            entries[HashableValue(key)] = value
        return Dict(entries)

    def _decode_substream(self, reader: DataReader, depth: int) -> SubStream:
        size = reader.read_size()
        body_offset = reader.offset
        body = DataReader(reader.read_bytes(size), base_offset=body_offset)
        try:
            save_count = self.read_body_header(body)
        except TruncatedError as e:
            raise EnvelopeError(
                f"Malformed substream: {size} byte body is too short for marker and save count",
                offset=body_offset,
            ) from e
        message = self._decode_values(body, save_count, depth + 1)
        return SubStream(message.values, save_count=message.save_count)

    def _decode_var_integer(self, reader: DataReader) -> BigInt:
        start = reader.offset
        width = reader.read_size()
        raw = reader.read_bytes(width)
        if width not in VAR_INTEGER_WIDTHS:
            log.error("Unexpected VarInt length %d: %s", width, raw.hex())
            raise VarIntWidthError(f"Unsupported var-int width {width}", offset=start)
        if width == 1:
            # single-byte values are sent with one extra byte; the value
            # is the byte after the declared one, unsigned
            return BigInt(reader.read_u8())
        return BigInt(int.from_bytes(raw, "little", signed=True))


# ---- Functional entry points ----

def decode_size(buffer: bytes | bytearray | memoryview) -> tuple[memoryview, int]:
    """Read one size field. Returns (rest, size)."""
    reader = DataReader(buffer)
    size = reader.read_size()
    return reader.rest(), size


def decode_value(
    buffer: bytes | bytearray | memoryview,
    config: DecoderConfig | None = None,
) -> tuple[memoryview, Value]:
    """Decode a single tagged value. Returns (rest, value)."""
    reader = DataReader(buffer)
    value = MarshalDecoder(config).decode_value(reader)
    return reader.rest(), value


def decode_message(
    buffer: bytes | bytearray | memoryview,
    config: DecoderConfig | None = None,
) -> Message:
    """Decode a full length-prefixed message, keeping its save counter."""
    return MarshalDecoder(config).decode_message(buffer)


def decode_payload(
    buffer: bytes | bytearray | memoryview,
    config: DecoderConfig | None = None,
) -> list[Value]:
    """Decode a full length-prefixed message into its values.

    Raises DecodeError (or a subclass) if anything about the message is off.
    """
    return list(MarshalDecoder(config).decode_message(buffer).values)


__all__ = [
    "DataReader", "DecoderConfig", "DEFAULT_CONFIG", "DecodeError", "MarshalDecoder",
    "Message", "LENGTH_PREFIX_SIZE",
    "decode_size", "decode_value", "decode_message", "decode_payload",
]
