"""SQLite-backed packet store."""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

from .errors import StorageError
from .mapper import map_packet, map_packets
from .models import (
    DEFAULT_LIMIT,
    DEFAULT_SORT,
    MAX_LIMIT,
    SORT_COLUMNS,
    CapturedPacket,
    StoredPacketRecord,
)
from .utils import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

_COLUMNS = (
    "source_ip",
    "destination_ip",
    "source_port",
    "destination_port",
    "protocol",
    "captured_at",
    "updated_at",
    "device_id",
)

_INSERT_SQL = (
    f"INSERT INTO packets ({', '.join(_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in _COLUMNS)})"
)
_SELECT_SQL = f"SELECT id, {', '.join(_COLUMNS)} FROM packets"


def read_schema_file(filename: Union[str, Path]) -> str:
    """Read the schema file, also trying the parent directory for relative paths."""
    path = Path(filename)
    candidates = [path]
    if not path.is_absolute():
        candidates.append(Path("..") / path)

    last_error: Optional[OSError] = None
    for candidate in candidates:
        try:
            return candidate.read_text(encoding="utf-8")
        except OSError as exc:
            last_error = exc
    raise StorageError(f"Unable to read schema file: {path}") from last_error


def resolve_sort(sort: Optional[str]) -> str:
    if sort and sort in SORT_COLUMNS:
        return sort
    if sort:
        logger.debug("Unknown sort column %r, using %s", sort, DEFAULT_SORT)
    return DEFAULT_SORT


def resolve_limit(limit: Optional[int]) -> int:
    if limit is None or limit <= 0:
        return DEFAULT_LIMIT
    return min(int(limit), MAX_LIMIT)


class PacketStore:
    """Persists packet records in a single ``packets`` table.

    One connection is shared between the batching thread and request
    handlers, so every statement runs under a lock.
    """

    def __init__(self, path: Union[str, Path] = ":memory:") -> None:
        self.path = str(path)
        try:
            self._conn = sqlite3.connect(self.path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to open database: {self.path}") from exc
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    def __enter__(self) -> "PacketStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    def init_schema(self, schema_path: Union[str, Path, None] = None) -> None:
        """Create the packets table if it does not exist yet."""
        schema = read_schema_file(schema_path or SCHEMA_PATH)
        with self._lock:
            try:
                self._conn.executescript(schema)
                self._conn.commit()
            except sqlite3.Error as exc:
                raise StorageError(f"Failed to initialise schema in {self.path}") from exc
        logger.info("Schema ready in %s", self.path)

    # ------------------------------------------------------------------
    def save_packet(self, packet: CapturedPacket) -> None:
        self.save_records([map_packet(packet)])

    def save_packets(self, packets: Sequence[CapturedPacket]) -> None:
        """Map and insert *packets* in one transaction.

        Mapping happens before any row is written, so a single bad packet
        fails the whole batch.
        """
        self.save_records(map_packets(packets))

    def save_records(self, records: Iterable[StoredPacketRecord]) -> None:
        rows = [
            (
                record.source_ip,
                record.destination_ip,
                record.source_port,
                record.destination_port,
                record.protocol,
                format_timestamp(record.captured_at),
                format_timestamp(record.updated_at),
                record.device_id,
            )
            for record in records
        ]
        with self._lock:
            try:
                with self._conn:
                    self._conn.executemany(_INSERT_SQL, rows)
            except sqlite3.Error as exc:
                raise StorageError(f"Failed to save {len(rows)} packets: {exc}") from exc
        logger.debug("Saved %d packets", len(rows))

    # ------------------------------------------------------------------
    def get_packets(
        self,
        limit: Optional[int] = DEFAULT_LIMIT,
        sort: Optional[str] = DEFAULT_SORT,
    ) -> List[StoredPacketRecord]:
        """Return at most *limit* records ordered descending by *sort*."""
        column = resolve_sort(sort)
        # column is from the allow-list, so interpolating it is safe.
        query = f"{_SELECT_SQL} ORDER BY {column} DESC, id DESC LIMIT ?"
        with self._lock:
            try:
                rows = self._conn.execute(query, (resolve_limit(limit),)).fetchall()
            except sqlite3.Error as exc:
                raise StorageError(f"Failed to query packets: {exc}") from exc
        return [_row_to_record(row) for row in rows]

    def get_packet(self, packet_id: int) -> Optional[StoredPacketRecord]:
        with self._lock:
            try:
                row = self._conn.execute(f"{_SELECT_SQL} WHERE id = ?", (packet_id,)).fetchone()
            except sqlite3.Error as exc:
                raise StorageError(f"Failed to load packet {packet_id}") from exc
        return _row_to_record(row) if row is not None else None

    def count(self) -> int:
        with self._lock:
            try:
                (total,) = self._conn.execute("SELECT COUNT(*) FROM packets").fetchone()
            except sqlite3.Error as exc:
                raise StorageError("Failed to count packets") from exc
        return int(total)

    def table_count(self) -> int:
        """Number of ``packets`` tables present; used to check schema idempotency."""
        with self._lock:
            (total,) = self._conn.execute(
                "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = 'packets'"
            ).fetchone()
        return int(total)


def _row_to_record(row) -> StoredPacketRecord:
    (
        packet_id,
        source_ip,
        destination_ip,
        source_port,
        destination_port,
        protocol,
        captured_at,
        updated_at,
        device_id,
    ) = row
    return StoredPacketRecord(
        id=packet_id,
        source_ip=source_ip,
        destination_ip=destination_ip,
        source_port=source_port,
        destination_port=destination_port,
        protocol=protocol,
        captured_at=parse_timestamp(captured_at),
        updated_at=parse_timestamp(updated_at),
        device_id=device_id,
    )


__all__ = ["SCHEMA_PATH", "PacketStore", "read_schema_file", "resolve_sort", "resolve_limit"]
