"""
eveproto — decoder for the EVE marshal wire format.

Components:
    protocol/  — value model, opcode table, string table, decoder
    sniffer/   — passive capture + message reassembly (scapy)
    net/       — asyncio listener handing received messages to the decoder
    cli.py     — decode / sniff / replay / serve entry point
"""

from eveproto.protocol import DecodeError, DecoderConfig, Message, decode_message, decode_payload

__version__ = "0.1.0"
