from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import pytest

from mapreport.config import MapReportConfig
from mapreport.models import MarkerRecord, Position
from mapreport.store.events import RecordOrigin, RemovalCause, StoreEvent, StoreEventKind
from mapreport.store.markers import MarkerStore, get_marker_store, reset_marker_store
from mapreport.store.persistent import MarkerPersistence, MemoryPersistentStore


def _dt(minutes: int = 0) -> datetime:
    return datetime(2026, 1, 1, tzinfo=UTC) + timedelta(minutes=minutes)


def _record(marker_id: str, minutes: int = 0, description: str = "") -> MarkerRecord:
    return MarkerRecord(
        id=marker_id,
        position=Position(lat=-37.81, lng=144.96),
        description=description,
        created_at=_dt(minutes),
    )


def test_capacity_keeps_newest_twenty_of_twenty_five() -> None:
    store = MarkerStore(capacity=20)
    events: list[StoreEvent] = []
    store.subscribe(events.append)

    for index in range(1, 26):
        assert store.add(_record(f"m{index}", index)) is True

    assert store.ids() == [f"m{index}" for index in range(6, 26)]
    evicted = [event for event in events if event.kind == StoreEventKind.REMOVED]
    assert [event.record_id for event in evicted] == ["m1", "m2", "m3", "m4", "m5"]
    assert all(event.cause == RemovalCause.CAPACITY for event in evicted)


def test_identical_re_add_is_a_no_op() -> None:
    store = MarkerStore()
    events: list[StoreEvent] = []
    store.subscribe(events.append)

    assert store.add(_record("a")) is True
    assert store.add(_record("a")) is False
    assert len(store) == 1
    assert len(events) == 1


def test_replacement_counts_as_new_arrival() -> None:
    store = MarkerStore()
    store.add(_record("a"))
    store.add(_record("b"))

    assert store.add(_record("a", description="updated")) is True

    assert store.ids() == ["b", "a"]
    assert store.get("a").description == "updated"


@pytest.mark.parametrize(
    "payload",
    [
        {"id": "bad", "position": {"lat": 123.0, "lng": 0.0}},
        {"position": {"lat": 0.0, "lng": 0.0}},
        {"id": "", "lat": 0.0, "lng": 0.0},
        {"id": "huge", "lat": 1.0, "lng": 2.0, "createdAt": 1e300},
        {"id": "inf", "lat": 1.0, "lng": 2.0, "createdAt": float("inf")},
    ],
)
def test_invalid_records_are_dropped(payload: dict) -> None:
    store = MarkerStore()
    assert store.add(payload) is False
    assert len(store) == 0


def test_add_accepts_legacy_mapping() -> None:
    store = MarkerStore()
    assert store.add({"id": 17, "lat": 1.0, "lng": 2.0, "time": 1_700_000_000_000}) is True
    assert "17" in store
    assert store.get("17").position == Position(lat=1.0, lng=2.0)


def test_all_is_restartable_and_snapshot_based() -> None:
    store = MarkerStore()
    for marker_id in ("a", "b", "c"):
        store.add(_record(marker_id))
    view = store.all()

    assert [record.id for record in view] == ["a", "b", "c"]
    assert [record.id for record in view] == ["a", "b", "c"]

    seen = []
    for record in view:
        seen.append(record.id)
        store.remove(record.id)
    assert seen == ["a", "b", "c"]
    assert len(store) == 0


def test_remove_reports_existence() -> None:
    store = MarkerStore()
    store.add(_record("a"))
    events: list[StoreEvent] = []
    store.subscribe(events.append)

    assert store.remove("a") is True
    assert store.remove("a") is False
    assert events[0].cause == RemovalCause.EXPLICIT


def test_failing_listener_does_not_break_mutation() -> None:
    store = MarkerStore()
    received: list[StoreEvent] = []

    def broken(event: StoreEvent) -> None:
        raise RuntimeError("boom")

    store.subscribe(broken)
    unsubscribe = store.subscribe(received.append)

    assert store.add(_record("a")) is True
    assert len(received) == 1

    unsubscribe()
    store.add(_record("b"))
    assert len(received) == 1


@pytest.mark.asyncio
async def test_load_batch_dedupes_keeping_newest() -> None:
    store = MarkerStore()
    store.add(_record("kept", 50, description="newer local"))
    events: list[StoreEvent] = []
    store.subscribe(events.append)

    ingested = await store.load_batch(
        [
            _record("a", 1, "first"),
            _record("a", 2, "second"),
            _record("a", 0, "stale"),
            _record("kept", 10, "older incoming"),
            {"id": "broken", "position": {"lat": 500, "lng": 0}},
            _record("b", 3),
        ],
        batch_size=2,
        delay=0,
    )

    assert ingested == 3
    assert store.get("a").description == "second"
    assert store.get("kept").description == "newer local"
    assert "broken" not in store
    bulk = [event for event in events if event.kind == StoreEventKind.BULK_LOADED]
    assert len(bulk) == 1
    assert bulk[0].count == 3
    assert bulk[0].origin == RecordOrigin.PERSISTED


@pytest.mark.asyncio
async def test_load_batch_leaves_capacity_to_the_sweep() -> None:
    store = MarkerStore(capacity=2)
    ingested = await store.load_batch([_record(f"m{i}", i) for i in range(4)], delay=0)

    assert ingested == 4
    assert len(store) == 4


def test_mutations_are_mirrored_to_persistence() -> None:
    backend = MemoryPersistentStore()
    store = MarkerStore(persistence=MarkerPersistence(backend, key="savedMarkers"))

    store.add(_record("a"))
    store.add(_record("b"))
    store.remove("a")

    blob = json.loads(backend.get("savedMarkers"))
    assert [item["id"] for item in blob] == ["b"]
    assert store.restore_records() == [_record("b")]


class _QuotaExceededBackend:
    def get(self, key: str) -> str | None:
        return None

    def set(self, key: str, value: str) -> None:
        raise RuntimeError("QuotaExceededError")


def test_failed_write_does_not_reach_caller() -> None:
    store = MarkerStore(capacity=1, persistence=MarkerPersistence(_QuotaExceededBackend()), save_debounce=0)

    assert store.add(_record("a")) is True
    assert store.add(_record("b", minutes=1)) is True
    assert store.remove("b") is True
    assert len(store) == 0
    assert store.writer is not None and store.writer.dirty


def test_process_wide_accessor() -> None:
    reset_marker_store()
    store = get_marker_store(MapReportConfig(capacity=3))
    assert get_marker_store() is store
    assert store.capacity == 3
    reset_marker_store()
    assert get_marker_store() is not store
    reset_marker_store()
