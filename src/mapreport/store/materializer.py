"""Batched conversion of stored markers into on-map visual objects."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from mapreport.config import MapReportConfig
from mapreport.models.marker import MarkerRecord
from mapreport.provider.handles import ProviderHandle, VisualObject
from mapreport.store.events import StoreEvent, StoreEventKind
from mapreport.store.markers import MarkerStore

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MaterializeResult:
    created: int = 0
    skipped: int = 0
    failed: int = 0
    detached: int = 0


class BatchMaterializer:
    """Render store records through the current provider handle in chunks.

    Visual objects are keyed by marker id only; the store stays the source of
    truth.  Stale visuals (removed, replaced or expired records) are detached
    before new ones are created, so live visuals never outnumber records.
    """

    def __init__(
        self,
        store: MarkerStore,
        *,
        batch_size: int = 5,
        batch_delay: float = 0.3,
        is_expired: Callable[[MarkerRecord], bool] | None = None,
    ) -> None:
        self._store = store
        self._batch_size = batch_size
        self._batch_delay = batch_delay
        self._is_expired = is_expired
        self._visuals: dict[str, VisualObject] = {}
        self._handle: ProviderHandle | None = None
        self._unsubscribe = store.subscribe(self._on_store_event)

    @classmethod
    def from_config(
        cls,
        config: MapReportConfig,
        store: MarkerStore,
        *,
        is_expired: Callable[[MarkerRecord], bool] | None = None,
    ) -> BatchMaterializer:
        return cls(store, batch_size=config.batch_size, batch_delay=config.batch_delay, is_expired=is_expired)

    @property
    def visual_count(self) -> int:
        return len(self._visuals)

    @property
    def rendered_ids(self) -> list[str]:
        return list(self._visuals)

    def visual_for(self, marker_id: str) -> VisualObject | None:
        return self._visuals.get(marker_id)

    async def materialize(
        self,
        records: Iterable[MarkerRecord] | None,
        handle: ProviderHandle,
        batch_size: int | None = None,
        delay: float | None = None,
    ) -> MaterializeResult:
        """Create visuals for *records* (default: the whole store).

        A record that fails to render is logged and skipped; it is retried on
        the next full pass.
        """
        size = batch_size if batch_size is not None and batch_size > 0 else self._batch_size
        pause = self._batch_delay if delay is None else max(delay, 0.0)

        detached = 0
        if self._handle is not None and self._handle is not handle:
            detached += self.detach_all()
        self._handle = handle
        detached += self.detach_stale()

        source = list(records) if records is not None else list(self._store.all())
        created = skipped = failed = 0
        for start in range(0, len(source), size):
            if start:
                await asyncio.sleep(pause)
            for candidate in source[start : start + size]:
                # Render what the store holds now; it may have changed during a pause.
                record = self._store.get(candidate.id)
                if record is None or record.id in self._visuals or self._expired(record):
                    skipped += 1
                    continue
                try:
                    visual = handle.create_visual(record)
                except Exception:
                    failed += 1
                    _logger.warning("Creating visual for marker %s failed", record.id, exc_info=True)
                    continue
                if visual is None:
                    skipped += 1
                    continue
                self._visuals[record.id] = visual
                created += 1

        result = MaterializeResult(created=created, skipped=skipped, failed=failed, detached=detached)
        _logger.debug("Materialized via %s: %s", handle.strategy, result)
        return result

    def detach(self, marker_id: str) -> bool:
        visual = self._visuals.pop(marker_id, None)
        if visual is None:
            return False
        try:
            visual.detach()
        except Exception:
            _logger.debug("Detaching visual for marker %s failed", marker_id, exc_info=True)
        return True

    def detach_stale(self) -> int:
        """Detach visuals whose record is gone or expired."""
        stale = [
            marker_id
            for marker_id in self._visuals
            if (record := self._store.get(marker_id)) is None or self._expired(record)
        ]
        for marker_id in stale:
            self.detach(marker_id)
        return len(stale)

    def detach_all(self) -> int:
        ids = list(self._visuals)
        for marker_id in ids:
            self.detach(marker_id)
        return len(ids)

    def close(self) -> None:
        self._unsubscribe()
        self.detach_all()

    def _expired(self, record: MarkerRecord) -> bool:
        return self._is_expired is not None and self._is_expired(record)

    def _on_store_event(self, event: StoreEvent) -> None:
        marker_id = event.record_id
        if marker_id is None:
            return
        if event.kind == StoreEventKind.REMOVED:
            self.detach(marker_id)
        elif event.kind == StoreEventKind.ADDED and marker_id in self._visuals:
            # The record was replaced; its visual is stale.
            self.detach(marker_id)
