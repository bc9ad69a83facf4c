"""
Capture Session — recorded traffic with markers, replayable offline.

Markers tie in-game actions to traffic:
  session.mark("undocked")
  session.mark("opened market")

A saved session can be loaded later and pushed through reassembly and
the decoder (decoded_messages) without touching the network again.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path

from eveproto.protocol.decoder import DecoderConfig, MarshalDecoder, Message
from eveproto.protocol.errors import DecodeError
from .capture import EVEPacket, EVESniffer
from .stream import MessageReassembler, StreamKey

log = logging.getLogger(__name__)


@dataclass
class Marker:
    """A user-placed marker during capture."""
    timestamp: float
    label: str
    packet_index: int  # index of next packet after this marker


@dataclass
class DecodedMessage:
    """One reassembled message and what the decoder made of it."""
    stream: StreamKey
    packet_index: int          # segment that completed the message
    raw: bytes
    message: Message | None = None
    error: DecodeError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class CaptureSession:
    """A recording session with markers for correlating actions to traffic."""
    name: str = field(default_factory=lambda: time.strftime("%Y%m%d_%H%M%S"))
    packets: list[EVEPacket] = field(default_factory=list)
    markers: list[Marker] = field(default_factory=list)
    start_time: float = 0.0

    def mark(self, label: str) -> Marker:
        """Place a marker at the current point in capture."""
        marker = Marker(time.time(), label, len(self.packets))
        self.markers.append(marker)
        log.info("Marker #%d %r after packet #%d", len(self.markers), label, marker.packet_index)
        return marker

    def add(self, pkt: EVEPacket) -> None:
        self.packets.append(pkt)

    def record(self, sniffer: EVESniffer, timeout: int | None = None) -> None:
        """Capture into this session until timeout or Ctrl+C."""
        self.start_time = time.time()
        sniffer.on_packet(self.add)
        print(f"[*] Session '{self.name}' recording...")
        try:
            sniffer.start(timeout=timeout)
        finally:
            sniffer.callbacks.remove(self.add)

    def packets_between_markers(self, marker_idx: int) -> list[EVEPacket]:
        """Packets from marker[idx] up to marker[idx+1] (or the end)."""
        if marker_idx >= len(self.markers):
            return []
        start = self.markers[marker_idx].packet_index
        if marker_idx + 1 < len(self.markers):
            end = self.markers[marker_idx + 1].packet_index
        else:
            end = len(self.packets)
        return self.packets[start:end]

    def decoded_messages(self, config: DecoderConfig | None = None) -> list[DecodedMessage]:
        """Reassemble every stream in the session and decode each message.

        Decode failures are recorded per message rather than raised, so a
        single bad message doesn't hide the rest of the capture.
        """
        decoder = MarshalDecoder(config)
        reassembler = MessageReassembler(max_message_size=decoder.config.max_payload_size)
        results: list[DecodedMessage] = []
        current = 0

        def _decode(key: StreamKey, data: bytes) -> None:
            entry = DecodedMessage(stream=key, packet_index=current, raw=data)
            try:
                entry.message = decoder.decode_message(data)
            except DecodeError as e:
                log.warning("Message %d on %s failed to decode: %s", len(results), key, e)
                entry.error = e
            results.append(entry)

        reassembler.on_message(_decode)
        for current, pkt in enumerate(self.packets):
            try:
                reassembler.feed(pkt)
            except DecodeError as e:
                results.append(DecodedMessage(
                    stream=(pkt.client_endpoint, pkt.direction),
                    packet_index=current, raw=b"", error=e,
                ))
        return results

    def save(self, directory: str | Path = "captures") -> Path:
        out_dir = Path(directory)
        out_dir.mkdir(parents=True, exist_ok=True)
        out_path = out_dir / f"{self.name}.json"

        data = {
            "name": self.name,
            "start_time": self.start_time,
            "packet_count": len(self.packets),
            "markers": [asdict(m) for m in self.markers],
            "packets": [p.to_dict() for p in self.packets],
        }
        out_path.write_text(json.dumps(data, indent=2))
        log.info("Session saved: %s (%d packets, %d markers)",
                 out_path, len(self.packets), len(self.markers))
        return out_path

    @classmethod
    def load(cls, path: str | Path) -> CaptureSession:
        data = json.loads(Path(path).read_text())
        return cls(
            name=data["name"],
            start_time=data.get("start_time", 0.0),
            markers=[Marker(**m) for m in data.get("markers", [])],
            packets=[EVEPacket.from_dict(p) for p in data.get("packets", [])],
        )

    def summary(self) -> str:
        c2s = sum(1 for p in self.packets if p.direction == "C2S")
        lines = [
            f"Session: {self.name}",
            f"  Packets: {len(self.packets)} total ({c2s} C2S, {len(self.packets) - c2s} S2C)",
            f"  Markers: {len(self.markers)}",
        ]
        for i, m in enumerate(self.markers):
            lines.append(f"    [{i}] {m.label} — {len(self.packets_between_markers(i))} packets after")
        return "\n".join(lines)
