"""Deterministic eviction policy.

A sweep runs two phases with no suspension point in between:

1. TTL phase: remove every record with ``now - created_at > ttl``.
2. Capacity phase: while the store is over capacity, remove the oldest
   remaining records (insertion order).

Given the same store contents and clock reading a sweep always removes the
same records, so an immediate second sweep removes nothing.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Final

from mapreport.config import MapReportConfig
from mapreport.models.marker import MarkerRecord
from mapreport.store.events import RemovalCause, StoreEvent, StoreEventKind
from mapreport.store.markers import MarkerStore

_logger = logging.getLogger(__name__)


class _Unset:
    def __repr__(self) -> str:
        return "<unset>"


_UNSET: Final = _Unset()


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class SweepResult:
    removed: int = 0
    expired: int = 0
    overflow: int = 0


class EvictionPolicy:
    """TTL and capacity pruning rules for a :class:`MarkerStore`.

    Parameters
    ----------
    ttl
        Record time-to-live; ``None`` disables expiry.
    capacity
        Maximum records kept; ``None`` disables the capacity phase.
    clock
        Returns the current UTC time.  Injected for deterministic tests.
    """

    def __init__(
        self,
        *,
        ttl: timedelta | None,
        capacity: int | None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._ttl = ttl
        self._capacity = capacity
        self._clock = clock

    @classmethod
    def from_config(cls, config: MapReportConfig, *, clock: Callable[[], datetime] = _utcnow) -> EvictionPolicy:
        return cls(ttl=config.ttl, capacity=config.capacity, clock=clock)

    @property
    def ttl(self) -> timedelta | None:
        return self._ttl

    @property
    def capacity(self) -> int | None:
        return self._capacity

    def now(self) -> datetime:
        return self._clock()

    def is_expired(
        self,
        record: MarkerRecord,
        now: datetime | None = None,
        ttl: timedelta | None | _Unset = _UNSET,
    ) -> bool:
        effective_ttl = self._ttl if isinstance(ttl, _Unset) else ttl
        if effective_ttl is None:
            return False
        current = now if now is not None else self._clock()
        return current - record.created_at > effective_ttl

    def sweep(
        self,
        store: MarkerStore,
        *,
        ttl: timedelta | None | _Unset = _UNSET,
        capacity: int | None | _Unset = _UNSET,
    ) -> SweepResult:
        """Run one TTL-then-capacity pass over *store*.

        Removals go through the store so visual detachment and persistence
        follow; a sweep that removed anything flushes persistence immediately.
        """
        effective_ttl = self._ttl if isinstance(ttl, _Unset) else ttl
        effective_capacity = self._capacity if isinstance(capacity, _Unset) else capacity
        now = self._clock()

        expired = 0
        if effective_ttl is not None:
            victims = [record.id for record in store.all() if self.is_expired(record, now, effective_ttl)]
            for marker_id in victims:
                if store.remove(marker_id, cause=RemovalCause.EXPIRED):
                    expired += 1

        overflow = 0
        if effective_capacity is not None and len(store) > effective_capacity:
            overflow = len(store.evict_oldest(len(store) - effective_capacity, cause=RemovalCause.CAPACITY))

        result = SweepResult(removed=expired + overflow, expired=expired, overflow=overflow)
        if result.removed:
            store.flush()
            _logger.debug("Sweep removed %d marker(s) (expired=%d, overflow=%d)", result.removed, expired, overflow)
        return result


class EvictionScheduler:
    """Run :meth:`EvictionPolicy.sweep` on an interval and after every bulk load."""

    def __init__(self, policy: EvictionPolicy, store: MarkerStore, *, interval: float) -> None:
        self._policy = policy
        self._store = store
        self._interval = interval
        self._task: asyncio.Task[Any] | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self.last_result: SweepResult | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._unsubscribe = self._store.subscribe(self._on_store_event)
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def run_once(self) -> SweepResult:
        try:
            result = self._policy.sweep(self._store)
        except Exception:
            _logger.warning("Eviction sweep failed", exc_info=True)
            result = SweepResult()
        self.last_result = result
        return result

    def _on_store_event(self, event: StoreEvent) -> None:
        if event.kind == StoreEventKind.BULK_LOADED:
            self.run_once()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.run_once()
