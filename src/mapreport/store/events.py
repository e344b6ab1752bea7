"""Marker store change events.

The marker store is the only component that mutates the marker
collection; everything that reacts to a change (visual detachment,
eviction after bulk loads, remote sync) subscribes to these events.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from mapreport.models.marker import MarkerRecord


class StoreEventKind(StrEnum):
    ADDED = "added"
    REMOVED = "removed"
    BULK_LOADED = "bulk_loaded"


class RecordOrigin(StrEnum):
    LOCAL = "local"
    PERSISTED = "persisted"
    REMOTE = "remote"


class RemovalCause(StrEnum):
    EXPLICIT = "explicit"
    EXPIRED = "expired"
    CAPACITY = "capacity"
    REMOTE = "remote"


class StoreEvent(BaseModel):
    """One change to the marker collection."""

    model_config = ConfigDict(frozen=True)

    kind: StoreEventKind
    origin: RecordOrigin = RecordOrigin.LOCAL
    record: MarkerRecord | None = None
    cause: RemovalCause | None = None
    count: int = Field(default=1, description="Records affected (bulk loads)")
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def record_id(self) -> str | None:
        return self.record.id if self.record is not None else None
