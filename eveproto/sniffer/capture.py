"""
eveproto — Packet Sniffer

Captures TCP traffic to/from EVE servers using scapy and hands each
non-empty segment to registered callbacks as an EVEPacket. Segments are
raw TCP payloads; run them through stream.MessageReassembler to get
whole marshal messages.

Requires libpcap/Npcap + capture privileges.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from scapy.all import IP, TCP, sniff

log = logging.getLogger(__name__)

# Default server config (Tranquility proxy)
DEFAULT_SERVER_IPS = ["87.237.38.200"]
DEFAULT_PORTS = [26000]

C2S = "C2S"  # client → server
S2C = "S2C"  # server → client


def hexdump(data: bytes | memoryview, width: int = 16) -> str:
    """Offset / hex / ASCII dump, `width` bytes per line."""
    data = bytes(data)
    lines = []
    for i in range(0, len(data), width):
        chunk = data[i:i + width]
        hex_part = " ".join(f"{b:02x}" for b in chunk)
        ascii_part = "".join(chr(b) if 32 <= b < 127 else "." for b in chunk)
        lines.append(f"  {i:04x}  {hex_part:<{width * 3}s}  {ascii_part}")
    return "\n".join(lines)


@dataclass
class EVEPacket:
    """One captured TCP segment."""
    timestamp: float
    direction: str          # C2S or S2C
    src_ip: str
    dst_ip: str
    src_port: int
    dst_port: int
    payload: bytes
    seq: int = 0
    ack: int = 0
    flags: str = ""

    @property
    def size(self) -> int:
        return len(self.payload)

    @property
    def pretty_hex(self) -> str:
        return hexdump(self.payload)

    @property
    def client_endpoint(self) -> str:
        """ip:port of the game client side of the connection."""
        if self.direction == C2S:
            return f"{self.src_ip}:{self.src_port}"
        return f"{self.dst_ip}:{self.dst_port}"

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "direction": self.direction,
            "src": f"{self.src_ip}:{self.src_port}",
            "dst": f"{self.dst_ip}:{self.dst_port}",
            "size": self.size,
            "seq": self.seq,
            "ack": self.ack,
            "flags": self.flags,
            "payload_hex": self.payload.hex(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> EVEPacket:
        src_ip, src_port = d.get("src", "0.0.0.0:0").rsplit(":", 1)
        dst_ip, dst_port = d.get("dst", "0.0.0.0:0").rsplit(":", 1)
        return cls(
            timestamp=d.get("timestamp", 0.0),
            direction=d.get("direction", S2C),
            src_ip=src_ip,
            dst_ip=dst_ip,
            src_port=int(src_port),
            dst_port=int(dst_port),
            payload=bytes.fromhex(d.get("payload_hex") or ""),
            seq=d.get("seq", 0),
            ack=d.get("ack", 0),
            flags=d.get("flags", ""),
        )

    def __repr__(self) -> str:
        arrow = "→" if self.direction == C2S else "←"
        return (
            f"[{self.direction}] {self.src_ip}:{self.src_port} "
            f"{arrow} {self.dst_ip}:{self.dst_port} ({self.size} bytes)"
        )


PacketCallback = Callable[[EVEPacket], None]


class EVESniffer:
    """Capture client/server traffic for the configured endpoints."""

    def __init__(
        self,
        server_ips: list[str] | None = None,
        ports: list[int] | None = None,
        iface: str | None = None,
    ):
        self.server_ips = server_ips or DEFAULT_SERVER_IPS
        self.ports = ports or DEFAULT_PORTS
        self.iface = iface
        self.callbacks: list[PacketCallback] = []

    @property
    def bpf_filter(self) -> str:
        ip_filters = " or ".join(f"host {ip}" for ip in self.server_ips)
        port_filters = " or ".join(f"port {p}" for p in self.ports)
        return f"tcp and ({ip_filters}) and ({port_filters})"

    def on_packet(self, callback: PacketCallback) -> None:
        self.callbacks.append(callback)

    def _direction(self, src_ip: str, dst_ip: str) -> str | None:
        if dst_ip in self.server_ips:
            return C2S
        if src_ip in self.server_ips:
            return S2C
        return None

    def _process_packet(self, raw_pkt) -> None:
        """scapy prn hook: wrap a sniffed frame and dispatch it."""
        if not raw_pkt.haslayer(TCP) or not raw_pkt.haslayer(IP):
            return
        ip_layer = raw_pkt[IP]
        tcp_layer = raw_pkt[TCP]

        payload = bytes(tcp_layer.payload)
        direction = self._direction(ip_layer.src, ip_layer.dst)
        if not payload or direction is None:
            return

        pkt = EVEPacket(
            timestamp=time.time(),
            direction=direction,
            src_ip=ip_layer.src,
            dst_ip=ip_layer.dst,
            src_port=tcp_layer.sport,
            dst_port=tcp_layer.dport,
            payload=payload,
            seq=tcp_layer.seq,
            ack=tcp_layer.ack,
            flags=str(tcp_layer.flags),
        )
        for cb in self.callbacks:
            try:
                cb(pkt)
            except Exception:
                log.exception("Packet callback failed for %r", pkt)

    def start(self, count: int = 0, timeout: int | None = None) -> None:
        """Capture until `count` packets or `timeout` seconds (0/None = forever)."""
        print("[*] eveproto sniffer starting...")
        print(f"[*] Filter: {self.bpf_filter}")
        print(f"[*] Interface: {self.iface or 'auto'}")
        print("[*] Press Ctrl+C to stop\n")
        try:
            sniff(
                filter=self.bpf_filter,
                prn=self._process_packet,
                iface=self.iface,
                count=count,
                timeout=timeout,
                store=False,
            )
        except KeyboardInterrupt:
            print("\n[*] Stopped by user")
