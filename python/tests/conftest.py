from __future__ import annotations

import socket
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import dpkt
import pytest

from tattletale.frames import DpktFrame
from tattletale.models import CapturedPacket

_SRC_MAC = b"\xaa\xbb\xcc\xdd\xee\xff"
_DST_MAC = b"\x11\x22\x33\x44\x55\x66"


def build_frame(
    src: str = "10.0.0.1",
    dst: str = "10.0.0.2",
    sport: int = 1234,
    dport: int = 80,
    proto: str = "tcp",
    payload: bytes = b"",
) -> bytes:
    """Serialise an Ethernet frame carrying TCP, UDP or ICMP over IPv4/IPv6."""
    ipv6 = ":" in src
    if proto == "tcp":
        transport = dpkt.tcp.TCP(sport=sport, dport=dport, seq=1, flags=dpkt.tcp.TH_SYN, win=512)
        transport.data = payload
        number = dpkt.ip.IP_PROTO_TCP
    elif proto == "udp":
        transport = dpkt.udp.UDP(sport=sport, dport=dport, ulen=8 + len(payload))
        transport.data = payload
        number = dpkt.ip.IP_PROTO_UDP
    else:
        transport = dpkt.icmp.ICMP(type=dpkt.icmp.ICMP_ECHO, data=dpkt.icmp.ICMP.Echo(id=1, seq=1))
        number = dpkt.ip.IP_PROTO_ICMP

    if ipv6:
        ip = dpkt.ip6.IP6(
            src=socket.inet_pton(socket.AF_INET6, src),
            dst=socket.inet_pton(socket.AF_INET6, dst),
            nxt=number,
            hlim=64,
        )
        ip.data = transport
        ip.plen = len(transport)
        eth_type = dpkt.ethernet.ETH_TYPE_IP6
    else:
        ip = dpkt.ip.IP(src=socket.inet_aton(src), dst=socket.inet_aton(dst), p=number, ttl=64)
        ip.data = transport
        ip.len = 20 + len(transport)
        eth_type = dpkt.ethernet.ETH_TYPE_IP

    ethernet = dpkt.ethernet.Ethernet(src=_SRC_MAC, dst=_DST_MAC, type=eth_type, data=ip)
    return bytes(ethernet)


def build_arp_frame() -> bytes:
    arp = dpkt.arp.ARP(
        spa=socket.inet_aton("10.0.0.1"),
        tpa=socket.inet_aton("10.0.0.2"),
        sha=_SRC_MAC,
    )
    ethernet = dpkt.ethernet.Ethernet(
        src=_SRC_MAC,
        dst=b"\xff" * 6,
        type=dpkt.ethernet.ETH_TYPE_ARP,
        data=arp,
    )
    return bytes(ethernet)


def make_packet(
    device_id: str = "eth0",
    captured_at: Optional[datetime] = None,
    frame: Optional[bytes] = None,
    **frame_kwargs,
) -> CapturedPacket:
    when = captured_at or datetime(2024, 1, 1, tzinfo=timezone.utc)
    data = frame if frame is not None else build_frame(**frame_kwargs)
    return CapturedPacket(
        frame=DpktFrame(data),
        captured_at=when,
        updated_at=when,
        device_id=device_id,
    )


class FakeCaptureHandle:
    """Scripted capture handle; ``None`` entries behave like read timeouts."""

    link_type = dpkt.pcap.DLT_EN10MB

    def __init__(
        self,
        frames=(),
        *,
        events: Optional[List[str]] = None,
        filter_error: Optional[Exception] = None,
        read_error: Optional[Exception] = None,
        endless: bool = False,
    ) -> None:
        self.frames = deque(frames)
        self.events = events if events is not None else []
        self.filter_error = filter_error
        self.read_error = read_error
        self.endless = endless
        self.filters: List[str] = []
        self.closed = False
        self.reads = 0

    def read(self):
        self.reads += 1
        if self.closed:
            raise EOFError("closed")
        if self.frames:
            frame = self.frames.popleft()
            return None if frame is None else (frame, 1_700_000_000.0 + self.reads)
        if self.read_error is not None:
            raise self.read_error
        if self.endless:
            return None
        raise EOFError("capture finished")

    def set_filter(self, expression: str) -> None:
        if self.filter_error is not None:
            raise self.filter_error
        self.filters.append(expression)

    def close(self) -> None:
        self.closed = True
        self.events.append("handle closed")


@pytest.fixture
def frame_bytes():
    return build_frame


@pytest.fixture
def arp_frame():
    return build_arp_frame()


@pytest.fixture
def packet_factory():
    return make_packet


@pytest.fixture
def timeline():
    start = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    return [start + timedelta(seconds=offset) for offset in range(10)]


@pytest.fixture
def fake_handle():
    return FakeCaptureHandle


@pytest.fixture
def opener_for():
    """Build an opener returning *handle* and recording the arguments it saw."""

    def factory(handle, calls: Optional[list] = None, error: Optional[Exception] = None):
        def opener(interface, snaplen, promisc, timeout):
            if calls is not None:
                calls.append((interface, snaplen, promisc, timeout))
            if error is not None:
                raise error
            handle.events.append("handle opened")
            return handle

        return opener

    return factory
