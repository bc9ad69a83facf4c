from .errors import (
    DecodeError, EnvelopeError, LengthMismatchError, MarkerError, PayloadTooLargeError,
    TruncatedError, InvalidTextError, StringTableIndexError, VarIntWidthError,
    UnhashableKeyError, UnknownOpcodeError, NestingDepthError,
)
from .opcodes import Opcode, MESSAGE_MARKER
from .values import (
    Value, NoneValue, Byte, Short, Integer, BigInt, Float, String, OwnedString,
    Tuple, Dict, Object, SubStream, HashableValue, compare_keys, to_hashable,
)
from .decoder import (
    DataReader, DecoderConfig, MarshalDecoder, Message,
    decode_size, decode_value, decode_message, decode_payload,
)

__all__ = [
    "DecodeError", "EnvelopeError", "LengthMismatchError", "MarkerError",
    "PayloadTooLargeError", "TruncatedError", "InvalidTextError",
    "StringTableIndexError", "VarIntWidthError", "UnhashableKeyError",
    "UnknownOpcodeError", "NestingDepthError",
    "Opcode", "MESSAGE_MARKER",
    "Value", "NoneValue", "Byte", "Short", "Integer", "BigInt", "Float", "String",
    "OwnedString", "Tuple", "Dict", "Object", "SubStream", "HashableValue",
    "compare_keys", "to_hashable",
    "DataReader", "DecoderConfig", "MarshalDecoder", "Message",
    "decode_size", "decode_value", "decode_message", "decode_payload",
]
