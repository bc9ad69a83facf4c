"""
Marshal opcode table — tag bytes that start every encoded value.

Only the opcodes seen in live traffic so far are listed. Anything else is
rejected by the decoder rather than guessed at.
"""

from __future__ import annotations

from enum import IntEnum


# Envelope marker that follows the declared length of every message and
# starts every substream body.
MESSAGE_MARKER = 0x7E

# Size fields: one byte, or this escape followed by a u32le.
SIZE_ESCAPE = 0xFF


class Opcode(IntEnum):
    NONE = 0x01
    LONG_LONG = 0x03          # i64le
    LONG = 0x04               # i32le, widened
    SIGNED_SHORT = 0x05       # i16le
    BYTE = 0x06               # u8
    INTEGER_MINUS_ONE = 0x07
    INTEGER_ZERO = 0x08
    INTEGER_ONE = 0x09
    REAL = 0x0A               # f64le
    REAL_ZERO = 0x0B
    SHORT_STRING = 0x10
    STRING_TABLE_STRING = 0x11
    WSTRING_UCS2 = 0x12
    LONG_STRING = 0x13
    TUPLE = 0x14
    DICT = 0x16
    OBJECT = 0x17
    EMPTY_TUPLE = 0x24
    ONE_TUPLE = 0x25
    SUBSTREAM = 0x2B
    TWO_TUPLE = 0x2C
    WSTRING_UTF8 = 0x2E
    VAR_INTEGER = 0x2F

    @classmethod
    def lookup(cls, tag: int) -> Opcode | None:
        """Return the opcode for a tag byte, or None if it isn't known."""
        try:
            return cls(tag)
        except ValueError:
            return None


# Accepted byte widths for VAR_INTEGER payloads.
VAR_INTEGER_WIDTHS = frozenset({1, 4, 8, 16})
