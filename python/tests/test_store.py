from __future__ import annotations

import sqlite3
from dataclasses import replace

import pytest

from tattletale.errors import MappingError, StorageError
from tattletale.mapper import map_packet
from tattletale.models import MAX_LIMIT
from tattletale.store import PacketStore, read_schema_file, resolve_limit


@pytest.fixture
def store():
    packet_store = PacketStore(":memory:")
    packet_store.init_schema()
    yield packet_store
    packet_store.close()


def test_schema_initialisation_is_idempotent(tmp_path):
    db_path = tmp_path / "packets.db"
    with PacketStore(db_path) as first:
        first.init_schema()
        first.init_schema()
        assert first.table_count() == 1

    with PacketStore(db_path) as second:
        second.init_schema()
        assert second.table_count() == 1


def test_query_limit_and_default_sort(store, packet_factory, timeline):
    store.save_packets([packet_factory(device_id=f"dev-{i}", captured_at=timeline[i]) for i in range(5)])

    records = store.get_packets(3, "")

    assert len(records) == 3
    assert [r.captured_at for r in records] == [timeline[4], timeline[3], timeline[2]]
    assert [r.device_id for r in records] == ["dev-4", "dev-3", "dev-2"]


def test_query_by_source_port(store, packet_factory):
    store.save_packets([packet_factory(sport=1000), packet_factory(sport=9000)])

    records = store.get_packets(10, "source_port")

    assert [r.source_port for r in records] == [9000, 1000]


def test_unknown_sort_key_falls_back_to_capture_time(store, packet_factory, timeline):
    store.save_packets(
        [
            packet_factory(captured_at=timeline[0], sport=9000),
            packet_factory(captured_at=timeline[1], sport=1000),
        ]
    )

    records = store.get_packets(10, "source_port; DROP TABLE packets")

    assert [r.source_port for r in records] == [1000, 9000]
    assert store.table_count() == 1


def test_non_positive_limit_uses_default(store, packet_factory):
    store.save_packets([packet_factory() for _ in range(120)])

    assert len(store.get_packets(0, "")) == 100
    assert len(store.get_packets(-5, "")) == 100
    assert store.count() == 120


def test_oversized_limit_is_clamped(store, packet_factory):
    store.save_packets([packet_factory() for _ in range(3)])

    assert resolve_limit(10**20) == MAX_LIMIT
    assert len(store.get_packets(10**20, "")) == 3


def test_records_round_trip_with_sequential_ids(store, packet_factory, timeline):
    store.save_packets([packet_factory(captured_at=timeline[0]), packet_factory(captured_at=timeline[1], proto="udp")])

    first = store.get_packet(1)
    second = store.get_packet(2)

    assert first is not None and second is not None
    assert first.id == 1 and second.id == 2
    assert first.protocol == "TCP" and second.protocol == "UDP"
    assert first.captured_at == timeline[0]
    assert store.get_packet(99) is None


def test_mapping_failure_saves_nothing(store, packet_factory):
    batch = [packet_factory(), packet_factory(proto="icmp"), packet_factory()]

    with pytest.raises(MappingError):
        store.save_packets(batch)

    assert store.count() == 0


def test_save_records_rejects_invalid_rows_atomically(store, packet_factory):
    good = map_packet(packet_factory())
    bad = replace(good, source_port=70000)

    with pytest.raises(StorageError):
        store.save_records([good, bad])

    assert store.count() == 0


def test_save_single_packet(store, packet_factory):
    store.save_packet(packet_factory(device_id="solo"))

    assert [r.device_id for r in store.get_packets(10, "device_id")] == ["solo"]


def test_query_without_schema_raises_storage_error():
    with PacketStore(":memory:") as bare:
        with pytest.raises(StorageError):
            bare.get_packets(10, "")


def test_missing_schema_file(tmp_path):
    with pytest.raises(StorageError):
        read_schema_file(tmp_path / "missing.sql")


def test_relative_schema_path_falls_back_to_parent(tmp_path, monkeypatch):
    (tmp_path / "schema.sql").write_text("CREATE TABLE IF NOT EXISTS packets (id INTEGER);")
    workdir = tmp_path / "cmd"
    workdir.mkdir()
    monkeypatch.chdir(workdir)

    assert "CREATE TABLE" in read_schema_file("schema.sql")


def test_bad_schema_sql_raises(tmp_path):
    broken = tmp_path / "broken.sql"
    broken.write_text("CREATE TABLE (")

    with PacketStore(":memory:") as packet_store:
        with pytest.raises(StorageError) as excinfo:
            packet_store.init_schema(broken)

    assert isinstance(excinfo.value.__cause__, sqlite3.Error)
