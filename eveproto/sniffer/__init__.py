from .capture import EVEPacket, EVESniffer, hexdump
from .stream import MessageReassembler, StreamBuffer
from .session import CaptureSession, DecodedMessage, Marker

__all__ = [
    "EVEPacket", "EVESniffer", "hexdump",
    "MessageReassembler", "StreamBuffer",
    "CaptureSession", "DecodedMessage", "Marker",
]
