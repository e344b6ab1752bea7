"""Eventual-consistency sync between the marker store and the remote store.

Local additions and removals are queued in an outbox and forwarded
best-effort; a failed forward stays queued for the next pass.  Each pass
then pulls the remote listing, ingests it in batches, and removes local
copies of markers that disappeared remotely.  The marker store never
depends on any of this succeeding.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any

from mapreport.exceptions import RemoteSyncError
from mapreport.models.marker import MarkerRecord
from mapreport.remote import RemoteStore
from mapreport.store.events import RecordOrigin, RemovalCause, StoreEvent, StoreEventKind
from mapreport.store.markers import MarkerStore

_logger = logging.getLogger(__name__)

# Local removals that should also remove the marker from the backend.
_FORWARDED_REMOVALS = frozenset({RemovalCause.EXPLICIT, RemovalCause.EXPIRED})


@dataclass(frozen=True, slots=True)
class SyncResult:
    pushed: int = 0
    deleted: int = 0
    pulled: int = 0
    removed: int = 0
    failed: int = 0


class RemoteSync:
    """Forward local changes to a :class:`RemoteStore` and pull remote ones."""

    def __init__(
        self,
        store: MarkerStore,
        remote: RemoteStore,
        *,
        interval: float = 60.0,
        batch_size: int | None = None,
        batch_delay: float | None = None,
    ) -> None:
        self._store = store
        self._remote = remote
        self._interval = interval
        self._batch_size = batch_size
        self._batch_delay = batch_delay
        self._pending_creates: dict[str, MarkerRecord] = {}
        self._pending_deletes: dict[str, None] = {}
        self._known_remote: set[str] = set()
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[Any] | None = None
        self._flush_task: asyncio.Task[Any] | None = None
        self._unsubscribe = store.subscribe(self._on_store_event)

    @property
    def pending_creates(self) -> list[str]:
        return list(self._pending_creates)

    @property
    def pending_deletes(self) -> list[str]:
        return list(self._pending_deletes)

    @property
    def known_remote(self) -> frozenset[str]:
        return frozenset(self._known_remote)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        self._unsubscribe()
        for task in (self._task, self._flush_task):
            if task is None:
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._task = None
        self._flush_task = None

    async def _run(self) -> None:
        while True:
            await self.sync()
            await asyncio.sleep(self._interval)

    # ------------------------------------------------------------------
    # Sync passes
    # ------------------------------------------------------------------

    async def sync(self) -> SyncResult:
        """Flush the outbox, then pull. Never raises :class:`RemoteSyncError`."""
        async with self._lock:
            pushed, deleted, failed = await self._flush_locked()
            pulled, removed, pull_failed = await self._pull_locked()
        result = SyncResult(pushed=pushed, deleted=deleted, pulled=pulled, removed=removed, failed=failed + pull_failed)
        _logger.debug("Remote sync pass: %s", result)
        return result

    async def flush_outbox(self) -> SyncResult:
        async with self._lock:
            pushed, deleted, failed = await self._flush_locked()
        return SyncResult(pushed=pushed, deleted=deleted, failed=failed)

    async def _flush_locked(self) -> tuple[int, int, int]:
        pushed = deleted = failed = 0

        for marker_id, record in list(self._pending_creates.items()):
            try:
                await self._remote.create(record)
            except RemoteSyncError as exc:
                failed += 1
                _logger.warning("Pushing marker %s failed; will retry: %s", marker_id, exc)
                continue
            if self._pending_creates.get(marker_id) is record:
                del self._pending_creates[marker_id]
            self._known_remote.add(marker_id)
            pushed += 1

        for marker_id in list(self._pending_deletes):
            try:
                await self._remote.delete(marker_id)
            except RemoteSyncError as exc:
                failed += 1
                _logger.warning("Deleting remote marker %s failed; will retry: %s", marker_id, exc)
                continue
            self._pending_deletes.pop(marker_id, None)
            self._known_remote.discard(marker_id)
            deleted += 1

        return pushed, deleted, failed

    async def _pull_locked(self) -> tuple[int, int, int]:
        try:
            records = await self._remote.list_all()
        except RemoteSyncError as exc:
            _logger.warning("Listing remote markers failed: %s", exc)
            return 0, 0, 1

        fresh_ids = {record.id for record in records}

        removed = 0
        for marker_id in self._known_remote - fresh_ids:
            if marker_id in self._pending_creates:
                continue
            if self._store.remove(marker_id, cause=RemovalCause.REMOTE):
                removed += 1

        incoming = self._admissible(records)
        pulled = await self._store.load_batch(
            incoming,
            self._batch_size,
            self._batch_delay,
            origin=RecordOrigin.REMOTE,
        )
        self._known_remote = fresh_ids | set(self._pending_creates)
        return pulled, removed, 0

    def _admissible(self, records: list[MarkerRecord]) -> list[MarkerRecord]:
        """Remote records worth ingesting, oldest first.

        When the store has a capacity, unseen records that could only displace
        newer local ones are skipped, so an unchanged listing ingests nothing.
        """
        incoming = sorted(
            (record for record in records if record.id not in self._pending_deletes),
            key=lambda record: record.created_at,
        )
        capacity = self._store.capacity
        if capacity is None:
            return incoming

        unseen = [record for record in incoming if record.id not in self._store]
        if len(self._store) and len(self._store) >= capacity:
            oldest = min(record.created_at for record in self._store.all())
            unseen = [record for record in unseen if record.created_at > oldest]
        keep = {record.id for record in unseen[-capacity:]} if capacity > 0 else set()
        return [record for record in incoming if record.id in self._store or record.id in keep]

    # ------------------------------------------------------------------
    # Store events
    # ------------------------------------------------------------------

    def _on_store_event(self, event: StoreEvent) -> None:
        record = event.record
        if record is None:
            return

        if event.kind == StoreEventKind.ADDED and event.origin == RecordOrigin.LOCAL:
            self._pending_creates[record.id] = record
            self._pending_deletes.pop(record.id, None)
            self._schedule_flush()
            return

        if event.kind != StoreEventKind.REMOVED:
            return
        if event.cause == RemovalCause.REMOTE:
            self._known_remote.discard(record.id)
            return
        if event.cause in _FORWARDED_REMOVALS:
            never_pushed = self._pending_creates.pop(record.id, None) is not None and record.id not in self._known_remote
            if not never_pushed:
                self._pending_deletes[record.id] = None
                self._schedule_flush()

    def _schedule_flush(self) -> None:
        if self._flush_task is not None and not self._flush_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._flush_task = loop.create_task(self.flush_outbox())
