"""Utility helpers shared across the capture pipeline."""

from __future__ import annotations

import ipaddress
from datetime import datetime, timezone
from typing import Union

MAX_PORT = 0xFFFF


def format_ip(value: Union[bytes, bytearray, str]) -> str:
    """Convert a raw IP buffer into a printable string."""
    if isinstance(value, (bytes, bytearray)):
        if len(value) == 4:
            return ".".join(str(b & 0xFF) for b in value)
        if len(value) == 16:
            return str(ipaddress.IPv6Address(bytes(value)))
    return str(value)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render *value* as fixed-width ISO-8601 UTC so stored text sorts chronologically."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(text: str) -> datetime:
    return datetime.fromisoformat(text)


__all__ = ["MAX_PORT", "format_ip", "utcnow", "format_timestamp", "parse_timestamp"]
