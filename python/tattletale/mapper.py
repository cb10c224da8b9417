"""Conversion of captured packets into storage records."""

from __future__ import annotations

from typing import Iterable, List

from .errors import MappingError
from .models import CapturedPacket, StoredPacketRecord
from .utils import MAX_PORT


def parse_port(text: str, side: str, packet: CapturedPacket) -> int:
    """Parse a textual transport port; anything but a 16-bit integer is an error."""
    try:
        port = int(str(text).strip(), 10)
    except ValueError as exc:
        raise MappingError(f"{side} port {text!r} is not an integer", packet) from exc
    if not 0 <= port <= MAX_PORT:
        raise MappingError(f"{side} port {port} is outside 0-{MAX_PORT}", packet)
    return port


def map_packet(packet: CapturedPacket) -> StoredPacketRecord:
    """Build a :class:`StoredPacketRecord` from *packet*'s network and transport layers."""
    network = packet.frame.network_flow()
    if network is None:
        raise MappingError("frame has no network layer", packet)

    transport = packet.frame.transport_flow()
    if transport is None:
        raise MappingError("frame has no transport layer", packet)
    if not transport.protocol:
        raise MappingError("frame has an unnamed transport layer", packet)

    return StoredPacketRecord(
        source_ip=network.src,
        destination_ip=network.dst,
        source_port=parse_port(transport.src, "source", packet),
        destination_port=parse_port(transport.dst, "destination", packet),
        protocol=transport.protocol,
        captured_at=packet.captured_at,
        updated_at=packet.updated_at,
        device_id=packet.device_id,
    )


def map_packets(packets: Iterable[CapturedPacket]) -> List[StoredPacketRecord]:
    """Map every packet; the first failure aborts the whole batch."""
    return [map_packet(packet) for packet in packets]


__all__ = ["parse_port", "map_packet", "map_packets"]
