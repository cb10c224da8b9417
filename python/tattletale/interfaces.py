"""Discovery of capture-capable network interfaces."""

from __future__ import annotations

import logging
import socket
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import psutil

from .capture import Device
from .models import InterfaceAddress

logger = logging.getLogger(__name__)


def list_devices(*, include_loopback: bool = True) -> List[Device]:
    """Return one fresh :class:`Device` per interface, sorted by name."""

    devices: Dict[str, Device] = {}

    for name, addresses, hardware in _psutil_interfaces():
        devices[name] = _make_device(name, addresses, hardware)

    if not devices:
        try:
            for _, name in socket.if_nameindex():
                devices.setdefault(name, _make_device(name, (), None))
        except OSError:  # pragma: no cover - platform dependent
            logger.debug("socket.if_nameindex() failed", exc_info=True)

    return [
        devices[name]
        for name in sorted(devices)
        if include_loopback or not devices[name].is_loopback
    ]


def find_device(name: str) -> Optional[Device]:
    for device in list_devices():
        if device.name == name:
            return device
    return None


def get_hardware_address(interface: str) -> Optional[str]:
    """Return the MAC address of *interface*, if psutil can see it."""

    try:
        entries = psutil.net_if_addrs().get(interface, [])  # type: ignore[attr-defined]
    except (OSError, psutil.Error):  # pragma: no cover - depends on the host
        logger.debug("psutil.net_if_addrs() lookup failed", exc_info=True)
        return None

    for entry in entries:
        if getattr(entry, "family", None) in _link_families():
            return getattr(entry, "address", "") or None
    return None


def _psutil_interfaces() -> Iterable[Tuple[str, List[InterfaceAddress], Optional[str]]]:
    try:
        table = psutil.net_if_addrs()  # type: ignore[attr-defined]
    except (OSError, psutil.Error):  # pragma: no cover - depends on the host
        logger.debug("Failed to enumerate interfaces via psutil", exc_info=True)
        return []

    found = []
    for name, entries in table.items():
        addresses: List[InterfaceAddress] = []
        hardware: Optional[str] = None
        for entry in entries:
            family = getattr(entry, "family", None)
            address = getattr(entry, "address", "")
            if not address:
                continue
            if family in _link_families():
                hardware = address
            elif family in (socket.AF_INET, socket.AF_INET6):
                addresses.append(
                    InterfaceAddress(
                        address=address,
                        netmask=getattr(entry, "netmask", None),
                        broadcast=getattr(entry, "broadcast", None),
                        family=family,
                    )
                )
        found.append((name, addresses, hardware))
    return found


def _make_device(name: str, addresses: Sequence[InterfaceAddress], hardware: Optional[str]) -> Device:
    loopback = _is_loopback(name, addresses)
    description = "Loopback interface" if loopback else ", ".join(a.address for a in addresses)
    return Device(
        name=name,
        description=description,
        addresses=tuple(addresses),
        hardware_address=hardware,
        is_loopback=loopback,
    )


def _link_families() -> Tuple[int, ...]:
    families: List[int] = []
    if hasattr(socket, "AF_PACKET"):
        families.append(socket.AF_PACKET)  # type: ignore[attr-defined]
    if hasattr(socket, "AF_LINK"):
        families.append(socket.AF_LINK)  # type: ignore[attr-defined]
    if hasattr(psutil, "AF_LINK"):
        families.append(psutil.AF_LINK)  # type: ignore[attr-defined]
    return tuple(families)


def _is_loopback(name: str, addresses: Sequence[InterfaceAddress]) -> bool:
    for addr in addresses:
        if addr.family == socket.AF_INET and addr.address.startswith("127."):
            return True
        if addr.family == socket.AF_INET6 and addr.address == "::1":
            return True
    return name.lower().startswith(("lo", "loopback"))


__all__ = ["list_devices", "find_device", "get_hardware_address"]
