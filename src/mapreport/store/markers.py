"""Canonical in-memory marker collection.

This is the only component allowed to mutate the marker collection.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import Any

from pydantic import ValidationError

from mapreport.config import MapReportConfig
from mapreport.exceptions import InvalidRecordError
from mapreport.models.marker import MarkerRecord
from mapreport.store.events import RecordOrigin, RemovalCause, StoreEvent, StoreEventKind
from mapreport.store.persistent import DebouncedWriter, MarkerPersistence, PersistentStore

_logger = logging.getLogger(__name__)

StoreListener = Callable[[StoreEvent], None]


class MarkerView:
    """Restartable view over the store in insertion order.

    Each iteration works on a fresh snapshot taken when iteration starts, so
    mutations during iteration are not observed.
    """

    def __init__(self, records: dict[str, MarkerRecord]) -> None:
        self._records = records

    def __iter__(self) -> Iterator[MarkerRecord]:
        snapshot = tuple(self._records.values())
        yield from snapshot

    def __len__(self) -> int:
        return len(self._records)


class MarkerStore:
    """Ordered ``id -> MarkerRecord`` mapping, insertion order = arrival order.

    Parameters
    ----------
    capacity
        Maximum records kept; ``add`` evicts the oldest beyond it.  ``None``
        means unbounded.
    persistence
        Blob adapter mirrored to after mutations (debounced).
    save_debounce
        Seconds over which persistence writes are coalesced.
    batch_size, batch_delay
        Defaults for :meth:`load_batch`.
    """

    def __init__(
        self,
        *,
        capacity: int | None = None,
        persistence: MarkerPersistence | None = None,
        save_debounce: float = 0.0,
        batch_size: int = 5,
        batch_delay: float = 0.3,
    ) -> None:
        self._capacity = capacity
        self._records: dict[str, MarkerRecord] = {}
        self._listeners: list[StoreListener] = []
        self._persistence = persistence
        self._writer = (
            DebouncedWriter(persistence, self._snapshot, delay=save_debounce) if persistence is not None else None
        )
        self._batch_size = batch_size
        self._batch_delay = batch_delay

    @classmethod
    def from_config(cls, config: MapReportConfig, persistent_store: PersistentStore | None = None) -> MarkerStore:
        persistence = None
        if persistent_store is not None:
            persistence = MarkerPersistence(persistent_store, key=config.storage_key)
        return cls(
            capacity=config.capacity,
            persistence=persistence,
            save_debounce=config.save_debounce,
            batch_size=config.batch_size,
            batch_delay=config.batch_delay,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def capacity(self) -> int | None:
        return self._capacity

    @property
    def writer(self) -> DebouncedWriter | None:
        return self._writer

    def all(self) -> MarkerView:
        return MarkerView(self._records)

    def get(self, marker_id: str) -> MarkerRecord | None:
        return self._records.get(marker_id)

    def ids(self) -> list[str]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, marker_id: object) -> bool:
        return marker_id in self._records

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register *listener* for store events; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, event: StoreEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                _logger.warning("Store listener failed on %s event", event.kind, exc_info=True)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(self, record: MarkerRecord | Mapping[str, Any], *, origin: RecordOrigin = RecordOrigin.LOCAL) -> bool:
        """Insert or replace a record.

        Returns ``False`` when the record is invalid (logged and dropped) or an
        identical copy is already stored.
        """
        parsed = self.coerce(record)
        if parsed is None:
            return False
        if not self._insert(parsed, origin):
            return False
        self._schedule_save()
        self._enforce_capacity()
        return True

    async def load_batch(
        self,
        records: Iterable[MarkerRecord | Mapping[str, Any]],
        batch_size: int | None = None,
        delay: float | None = None,
        *,
        origin: RecordOrigin = RecordOrigin.PERSISTED,
    ) -> int:
        """Ingest a large record set in chunks, yielding between chunks.

        Duplicate ids keep the record with the newest ``created_at``, both
        within the batch and against records already stored.  Capacity is
        left to the eviction sweep that follows the ``BULK_LOADED`` event.

        Returns the number of records inserted or replaced.
        """
        size = batch_size if batch_size is not None and batch_size > 0 else self._batch_size
        pause = self._batch_delay if delay is None else max(delay, 0.0)

        items = list(records)
        ingested = 0
        for start in range(0, len(items), size):
            if start:
                await asyncio.sleep(pause)
            for item in items[start : start + size]:
                parsed = self.coerce(item)
                if parsed is None:
                    continue
                existing = self._records.get(parsed.id)
                if existing is not None and existing.created_at > parsed.created_at:
                    continue
                if self._insert(parsed, origin):
                    ingested += 1

        _logger.debug("Bulk load from %s ingested %d of %d record(s)", origin, ingested, len(items))
        if ingested:
            self._schedule_save()
        self._emit(StoreEvent(kind=StoreEventKind.BULK_LOADED, origin=origin, count=ingested))
        return ingested

    def remove(self, marker_id: str, *, cause: RemovalCause = RemovalCause.EXPLICIT) -> bool:
        """Remove a record. Returns whether it existed."""
        record = self._records.pop(marker_id, None)
        if record is None:
            return False
        self._emit(StoreEvent(kind=StoreEventKind.REMOVED, record=record, cause=cause))
        self._schedule_save()
        return True

    def evict_oldest(self, count: int, *, cause: RemovalCause = RemovalCause.CAPACITY) -> list[MarkerRecord]:
        """Remove the *count* oldest records (insertion order)."""
        victims = list(self._records)[: max(count, 0)]
        removed: list[MarkerRecord] = []
        for marker_id in victims:
            record = self._records[marker_id]
            if self.remove(marker_id, cause=cause):
                removed.append(record)
        return removed

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def flush(self) -> bool:
        """Write pending changes to the persistent store now."""
        if self._writer is None:
            return True
        return self._writer.flush()

    def restore_records(self) -> list[MarkerRecord]:
        """Read the persisted collection (does not ingest it)."""
        if self._persistence is None:
            return []
        return self._persistence.load()

    def close(self) -> None:
        """Flush pending writes and drop listeners."""
        self.flush()
        self._listeners.clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _snapshot(self) -> list[MarkerRecord]:
        return list(self._records.values())

    def _schedule_save(self) -> None:
        if self._writer is not None:
            self._writer.schedule()

    def coerce(self, record: MarkerRecord | Mapping[str, Any]) -> MarkerRecord | None:
        """Validate *record*; ``None`` (logged) when it is not a valid marker."""
        if isinstance(record, MarkerRecord):
            return record
        if isinstance(record, Mapping):
            try:
                return MarkerRecord.model_validate(dict(record))
            except ValidationError as exc:
                record_id = record.get("id")
                error = InvalidRecordError(
                    f"invalid marker record: {exc.error_count()} validation error(s)",
                    record_id=str(record_id) if record_id is not None else None,
                )
                _logger.warning("Dropping marker %s: %s", error.record_id, error)
                return None
        _logger.warning("Dropping marker of unsupported type %s", type(record).__name__)
        return None

    def _insert(self, record: MarkerRecord, origin: RecordOrigin) -> bool:
        existing = self._records.get(record.id)
        if existing is not None:
            if existing == record:
                _logger.debug("Ignoring identical re-add of marker %s", record.id)
                return False
            # A replacing update counts as a new arrival.
            del self._records[record.id]
        self._records[record.id] = record
        self._emit(StoreEvent(kind=StoreEventKind.ADDED, origin=origin, record=record))
        return True

    def _enforce_capacity(self) -> None:
        if self._capacity is None:
            return
        overflow = len(self._records) - self._capacity
        if overflow > 0:
            self.evict_oldest(overflow, cause=RemovalCause.CAPACITY)


# ----------------------------------------------------------------------
# Process-wide accessor
# ----------------------------------------------------------------------

_store: MarkerStore | None = None


def get_marker_store(
    config: MapReportConfig | None = None,
    persistent_store: PersistentStore | None = None,
) -> MarkerStore:
    """Return the process-wide marker store, creating it on first use."""
    global _store
    if _store is None:
        _store = MarkerStore.from_config(config or MapReportConfig(), persistent_store)
    return _store


def reset_marker_store() -> None:
    """Discard the process-wide marker store after flushing it."""
    global _store
    if _store is not None:
        _store.close()
    _store = None
