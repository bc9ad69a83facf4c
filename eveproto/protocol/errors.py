"""
Decode errors.

Every error aborts the decode call that raised it. There is no
resynchronisation inside a marshal stream, so a consumer reading from a
socket should drop the connection on any DecodeError.
"""

from __future__ import annotations


class DecodeError(Exception):
    """Base class for everything the decoder can raise."""

    def __init__(self, message: str, offset: int | None = None):
        self.offset = offset
        if offset is not None:
            message = f"{message} (at offset {offset})"
        super().__init__(message)


class EnvelopeError(DecodeError):
    """The outer message frame is malformed."""


class LengthMismatchError(EnvelopeError):
    """Declared length does not match the bytes handed to the framer.

    This is a caller bug rather than a bad packet: the transport sliced
    the wrong range off the wire.
    """

    def __init__(self, declared: int, actual: int):
        self.declared = declared
        self.actual = actual
        super().__init__(f"Declared length {declared} but {actual} bytes follow", offset=0)


class MarkerError(EnvelopeError):
    """The fixed 0x7e marker byte is missing."""


class PayloadTooLargeError(EnvelopeError):
    """Declared length exceeds the configured maximum."""


class TruncatedError(DecodeError):
    """Not enough bytes left for a fixed-width field or a declared size."""


class InvalidTextError(DecodeError):
    """A UCS-2 or UTF-8 string could not be converted."""


class StringTableIndexError(DecodeError):
    """String-table reference points past the end of the table."""


class VarIntWidthError(DecodeError):
    """Variable-width integer with a byte width other than 1, 4, 8 or 16."""


class UnhashableKeyError(DecodeError):
    """A value that can't be a dict key was used as one."""


class UnknownOpcodeError(DecodeError):
    """Tag byte is not in the opcode table."""

    def __init__(self, opcode: int, offset: int | None = None):
        self.opcode = opcode
        super().__init__(f"Unknown opcode 0x{opcode:02x}", offset=offset)


class NestingDepthError(DecodeError):
    """Composite values are nested deeper than the configured limit."""
