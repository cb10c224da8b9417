"""Decode-on-demand view over raw captured frames.

The mapper only needs three things from a frame: the network layer
source/destination, the transport layer source/destination plus its
protocol name, and the raw bytes.  :class:`Frame` captures exactly that so
any decoding library can back it; :class:`DpktFrame` is the dpkt-backed
implementation used by the live capture path.
"""

from __future__ import annotations

import logging
from typing import NamedTuple, Optional, Protocol, Tuple

import dpkt
from dpkt.ethernet import VLANtag8021Q

from .utils import format_ip

logger = logging.getLogger(__name__)

_TRANSPORT_NAMES = (
    (dpkt.tcp.TCP, "TCP"),
    (dpkt.udp.UDP, "UDP"),
    (dpkt.sctp.SCTP, "SCTP"),
)


class Flow(NamedTuple):
    src: str
    dst: str


class TransportFlow(NamedTuple):
    """Transport endpoints; ports are kept as text, as the frame presents them."""

    src: str
    dst: str
    protocol: str


class Frame(Protocol):
    @property
    def data(self) -> bytes:  # pragma: no cover - protocol definition
        ...

    def network_flow(self) -> Optional[Flow]:  # pragma: no cover - protocol definition
        ...

    def transport_flow(self) -> Optional[TransportFlow]:  # pragma: no cover - protocol definition
        ...


class DpktFrame:
    """Ethernet frame decoded lazily with dpkt on first layer access."""

    __slots__ = ("_data", "_decoded", "_network", "_transport")

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._decoded = False
        self._network: Optional[Flow] = None
        self._transport: Optional[TransportFlow] = None

    @property
    def data(self) -> bytes:
        return self._data

    def network_flow(self) -> Optional[Flow]:
        self._decode()
        return self._network

    def transport_flow(self) -> Optional[TransportFlow]:
        self._decode()
        return self._transport

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"DpktFrame({len(self._data)} bytes)"

    # ------------------------------------------------------------------
    def _decode(self) -> None:
        if self._decoded:
            return
        self._decoded = True

        try:
            ethernet = dpkt.ethernet.Ethernet(self._data)
        except (dpkt.UnpackError, ValueError):
            logger.debug("Undecodable Ethernet frame", exc_info=True)
            return

        payload = ethernet.data
        if isinstance(payload, VLANtag8021Q):
            payload = payload.data

        layers = _network_layers(payload)
        if layers is None:
            return
        self._network, transport = layers
        self._transport = _transport_flow(transport)


def _network_layers(payload) -> Optional[Tuple[Flow, object]]:
    if isinstance(payload, (dpkt.ip.IP, dpkt.ip6.IP6)):
        return Flow(format_ip(payload.src), format_ip(payload.dst)), payload.data
    return None


def _transport_flow(transport) -> Optional[TransportFlow]:
    for layer_type, name in _TRANSPORT_NAMES:
        if isinstance(transport, layer_type):
            return TransportFlow(str(transport.sport), str(transport.dport), name)
    return None


def decode_frame(data: bytes) -> DpktFrame:
    return DpktFrame(data)


__all__ = ["Flow", "TransportFlow", "Frame", "DpktFrame", "decode_frame"]
