"""Marker store layer.

This package is the single source of truth for user-created markers: the
in-memory collection, its durable mirror, eviction, and materialization
into visual objects.
"""

from mapreport.store.events import RecordOrigin, RemovalCause, StoreEvent, StoreEventKind
from mapreport.store.markers import MarkerStore, MarkerView, get_marker_store, reset_marker_store
from mapreport.store.materializer import BatchMaterializer, MaterializeResult
from mapreport.store.persistent import (
    DebouncedWriter,
    JsonFilePersistentStore,
    MarkerPersistence,
    MemoryPersistentStore,
    PersistentStore,
)
from mapreport.store.policy import EvictionPolicy, EvictionScheduler, SweepResult

__all__ = [
    "BatchMaterializer",
    "DebouncedWriter",
    "EvictionPolicy",
    "EvictionScheduler",
    "JsonFilePersistentStore",
    "MarkerPersistence",
    "MarkerStore",
    "MarkerView",
    "MaterializeResult",
    "MemoryPersistentStore",
    "PersistentStore",
    "RecordOrigin",
    "RemovalCause",
    "StoreEvent",
    "StoreEventKind",
    "SweepResult",
    "get_marker_store",
    "reset_marker_store",
]
