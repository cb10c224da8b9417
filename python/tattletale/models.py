"""Value types passed between the capture, batching and storage stages."""

from __future__ import annotations

import socket
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Optional

from .utils import format_timestamp

if TYPE_CHECKING:  # pragma: no cover
    from .frames import Frame

DEFAULT_LIMIT = 100
# Largest value SQLite accepts as a bound integer.
MAX_LIMIT = 2**63 - 1
DEFAULT_SORT = "captured_at"

# Column names accepted for ordering query results.
SORT_COLUMNS = frozenset(
    {
        "device_id",
        "captured_at",
        "updated_at",
        "source_ip",
        "destination_ip",
        "source_port",
        "destination_port",
        "protocol",
    }
)


@dataclass(frozen=True)
class InterfaceAddress:
    """Network layer addressing for a capture device."""

    address: str
    netmask: Optional[str] = None
    broadcast: Optional[str] = None
    family: int = socket.AF_INET


@dataclass(frozen=True)
class CapturedPacket:
    """A captured frame plus the metadata stamped on it by the capture loop."""

    frame: "Frame"
    captured_at: datetime
    updated_at: datetime
    device_id: str
    id: Optional[str] = None


@dataclass(frozen=True)
class StoredPacketRecord:
    """Normalised row persisted by the packet store."""

    source_ip: str
    destination_ip: str
    source_port: int
    destination_port: int
    protocol: str
    captured_at: datetime
    updated_at: datetime
    device_id: str
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["captured_at"] = format_timestamp(self.captured_at)
        data["updated_at"] = format_timestamp(self.updated_at)
        return data


__all__ = [
    "DEFAULT_LIMIT",
    "DEFAULT_SORT",
    "MAX_LIMIT",
    "SORT_COLUMNS",
    "InterfaceAddress",
    "CapturedPacket",
    "StoredPacketRecord",
]
