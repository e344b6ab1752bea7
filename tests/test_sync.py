from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest

from mapreport.exceptions import RemoteSyncError
from mapreport.models import MarkerRecord, Position
from mapreport.store.events import RemovalCause, StoreEvent, StoreEventKind
from mapreport.store.markers import MarkerStore
from mapreport.store.policy import EvictionPolicy, EvictionScheduler
from mapreport.sync import RemoteSync


@dataclass
class _FakeRemote:
    markers: dict[str, MarkerRecord] = field(default_factory=dict)
    fail: bool = False
    created: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    def _check(self) -> None:
        if self.fail:
            raise RemoteSyncError("edge unavailable", status_code=503, endpoint="/api/markers")

    async def list_all(self) -> list[MarkerRecord]:
        self._check()
        return list(self.markers.values())

    async def get(self, marker_id: str) -> MarkerRecord | None:
        self._check()
        return self.markers.get(marker_id)

    async def create(self, record: MarkerRecord) -> MarkerRecord:
        self._check()
        self.markers[record.id] = record
        self.created.append(record.id)
        return record

    async def delete(self, marker_id: str) -> bool:
        self._check()
        self.deleted.append(marker_id)
        return self.markers.pop(marker_id, None) is not None


_T0 = datetime(2026, 1, 1, tzinfo=UTC)


def _record(marker_id: str, description: str = "", created_at: datetime = _T0) -> MarkerRecord:
    return MarkerRecord(
        id=marker_id,
        position=Position(lat=1.0, lng=2.0),
        description=description,
        created_at=created_at,
    )


def _sync(store: MarkerStore, remote: _FakeRemote) -> RemoteSync:
    return RemoteSync(store, remote, interval=3600, batch_size=10, batch_delay=0)


@pytest.mark.asyncio
async def test_local_additions_are_pushed() -> None:
    store = MarkerStore()
    remote = _FakeRemote()
    sync = _sync(store, remote)

    store.add(_record("a"))
    result = await sync.sync()

    assert result.pushed == 1
    assert remote.created == ["a"]
    assert sync.pending_creates == []
    assert "a" in sync.known_remote
    await sync.stop()


@pytest.mark.asyncio
async def test_failed_push_stays_in_outbox_until_retry() -> None:
    store = MarkerStore()
    remote = _FakeRemote(fail=True)
    sync = _sync(store, remote)

    store.add(_record("a"))
    result = await sync.sync()

    assert result.failed == 2
    assert sync.pending_creates == ["a"]
    assert "a" in store

    remote.fail = False
    retry = await sync.sync()
    assert retry.pushed == 1
    assert remote.created == ["a"]
    await sync.stop()


@pytest.mark.asyncio
async def test_remote_records_are_ingested_without_echo() -> None:
    store = MarkerStore()
    remote = _FakeRemote(markers={"r1": _record("r1"), "r2": _record("r2")})
    sync = _sync(store, remote)

    result = await sync.sync()

    assert result.pulled == 2
    assert store.ids() == ["r1", "r2"]
    assert remote.created == []
    await sync.stop()


@pytest.mark.asyncio
async def test_remote_deletion_removes_local_copy() -> None:
    store = MarkerStore()
    remote = _FakeRemote(markers={"r1": _record("r1"), "r2": _record("r2")})
    sync = _sync(store, remote)
    await sync.sync()

    del remote.markers["r1"]
    result = await sync.sync()

    assert result.removed == 1
    assert store.ids() == ["r2"]
    assert remote.deleted == []
    await sync.stop()


@pytest.mark.asyncio
async def test_explicit_and_expired_removals_are_forwarded() -> None:
    store = MarkerStore()
    remote = _FakeRemote(markers={"r1": _record("r1"), "r2": _record("r2"), "r3": _record("r3")})
    sync = _sync(store, remote)
    await sync.sync()

    store.remove("r1")
    store.remove("r2", cause=RemovalCause.EXPIRED)
    store.remove("r3", cause=RemovalCause.CAPACITY)
    await sync.flush_outbox()

    assert sorted(remote.deleted) == ["r1", "r2"]
    assert "r3" in remote.markers
    await sync.stop()


@pytest.mark.asyncio
async def test_removed_before_push_is_never_sent() -> None:
    store = MarkerStore()
    remote = _FakeRemote()
    sync = _sync(store, remote)

    store.add(_record("draft"))
    store.remove("draft")
    await sync.sync()

    assert remote.created == []
    assert remote.deleted == []
    await sync.stop()


@pytest.mark.asyncio
async def test_pending_delete_is_not_resurrected_by_pull() -> None:
    store = MarkerStore()
    remote = _FakeRemote(markers={"r1": _record("r1")})
    sync = _sync(store, remote)
    await sync.sync()

    remote.fail = True
    store.remove("r1")
    await sync.flush_outbox()
    assert sync.pending_deletes == ["r1"]

    remote.fail = False
    await sync.sync()
    assert "r1" not in store
    assert "r1" not in remote.markers
    await sync.stop()


@pytest.mark.asyncio
async def test_local_additions_flush_in_background() -> None:
    store = MarkerStore()
    remote = _FakeRemote()
    sync = _sync(store, remote)

    store.add(_record("a"))
    await asyncio.sleep(0.01)

    assert remote.created == ["a"]
    await sync.stop()


@pytest.mark.asyncio
async def test_periodic_task_runs_and_stops() -> None:
    store = MarkerStore()
    remote = _FakeRemote(markers={"r1": _record("r1")})
    sync = _sync(store, remote)

    sync.start()
    await asyncio.sleep(0.01)
    assert "r1" in store

    await sync.stop()
    store.add(_record("after-stop"))
    await asyncio.sleep(0.01)
    assert remote.created == []


@pytest.mark.asyncio
async def test_repeated_pull_over_capacity_is_stable() -> None:
    store = MarkerStore(capacity=20)
    scheduler = EvictionScheduler(EvictionPolicy(ttl=None, capacity=20), store, interval=3600)
    scheduler.start()
    remote = _FakeRemote()
    for n in range(25, 0, -1):
        marker_id = f"m{n}"
        remote.markers[marker_id] = _record(marker_id, created_at=_T0 + timedelta(minutes=n))
    sync = _sync(store, remote)

    first = await sync.sync()
    assert first.pulled == 20
    assert store.ids() == [f"m{n}" for n in range(6, 26)]

    events: list[StoreEvent] = []
    store.subscribe(events.append)
    second = await sync.sync()

    assert second.pulled == 0
    assert store.ids() == [f"m{n}" for n in range(6, 26)]
    assert [event.kind for event in events] == [StoreEventKind.BULK_LOADED]
    await sync.stop()
    await scheduler.stop()
