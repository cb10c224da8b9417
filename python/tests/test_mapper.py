from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import pytest

from tattletale.errors import MappingError
from tattletale.frames import Flow, TransportFlow
from tattletale.mapper import map_packet, map_packets
from tattletale.models import CapturedPacket


@dataclass
class StubFrame:
    network: Optional[Flow]
    transport: Optional[TransportFlow]
    data: bytes = b""

    def network_flow(self) -> Optional[Flow]:
        return self.network

    def transport_flow(self) -> Optional[TransportFlow]:
        return self.transport


def _stub_packet(network, transport) -> CapturedPacket:
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return CapturedPacket(frame=StubFrame(network, transport), captured_at=now, updated_at=now, device_id="eth0")


def test_tcp_frame_maps_to_record(packet_factory):
    captured = datetime(2024, 3, 1, 8, 30, tzinfo=timezone.utc)
    packet = packet_factory(device_id="enp18s0", captured_at=captured)

    record = map_packet(packet)

    assert record.source_ip == "10.0.0.1"
    assert record.destination_ip == "10.0.0.2"
    assert record.source_port == 1234
    assert record.destination_port == 80
    assert record.protocol == "TCP"
    assert record.captured_at == captured
    assert record.updated_at == captured
    assert record.device_id == "enp18s0"
    assert record.id is None


def test_udp_frame_protocol_name(packet_factory):
    record = map_packet(packet_factory(sport=53, dport=40000, proto="udp"))

    assert record.protocol == "UDP"
    assert (record.source_port, record.destination_port) == (53, 40000)


def test_frame_without_transport_layer_fails(packet_factory):
    with pytest.raises(MappingError, match="transport layer") as excinfo:
        map_packet(packet_factory(proto="icmp"))

    assert excinfo.value.packet is not None


def test_frame_without_network_layer_fails(packet_factory, arp_frame):
    with pytest.raises(MappingError, match="network layer"):
        map_packet(packet_factory(frame=arp_frame))


def test_non_numeric_port_is_an_error_not_zero():
    packet = _stub_packet(Flow("10.0.0.1", "10.0.0.2"), TransportFlow("http", "80", "TCP"))

    with pytest.raises(MappingError, match="not an integer"):
        map_packet(packet)


def test_out_of_range_port_is_an_error():
    packet = _stub_packet(Flow("10.0.0.1", "10.0.0.2"), TransportFlow("1234", "70000", "UDP"))

    with pytest.raises(MappingError, match="outside"):
        map_packet(packet)


def test_empty_protocol_name_is_an_error():
    packet = _stub_packet(Flow("10.0.0.1", "10.0.0.2"), TransportFlow("1", "2", ""))

    with pytest.raises(MappingError):
        map_packet(packet)


def test_one_bad_packet_fails_the_whole_batch(packet_factory):
    batch = [packet_factory(), packet_factory(proto="icmp"), packet_factory()]

    with pytest.raises(MappingError):
        map_packets(batch)


def test_map_packets_keeps_order(packet_factory):
    batch = [packet_factory(sport=port) for port in (1000, 2000, 3000)]

    assert [record.source_port for record in map_packets(batch)] == [1000, 2000, 3000]
