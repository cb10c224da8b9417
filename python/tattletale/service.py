"""Input normalisation in front of the packet store's read path."""

from __future__ import annotations

from typing import List, Optional, Protocol

from .models import DEFAULT_LIMIT, DEFAULT_SORT, MAX_LIMIT, StoredPacketRecord


class PacketReader(Protocol):
    def get_packets(self, limit: int, sort: str) -> List[StoredPacketRecord]:  # pragma: no cover
        ...


def normalize_limit(limit: Optional[int]) -> int:
    if limit is None or limit <= 0:
        return DEFAULT_LIMIT
    return min(limit, MAX_LIMIT)


def normalize_sort(sort: Optional[str]) -> str:
    return sort or DEFAULT_SORT


class QueryService:
    def __init__(self, store: PacketReader) -> None:
        self.store = store

    def get_packets(self, limit: Optional[int] = None, sort: Optional[str] = None) -> List[StoredPacketRecord]:
        return self.store.get_packets(normalize_limit(limit), normalize_sort(sort))


__all__ = ["QueryService", "normalize_limit", "normalize_sort"]
