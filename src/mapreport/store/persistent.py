"""Durable key-value storage for the marker collection.

The collection is stored as one JSON array of marker-shaped objects under a
single key.  Unreadable or malformed blobs are discarded and logged; write
failures are logged and leave the in-memory collection authoritative.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from mapreport._constants import DEFAULT_ORIGIN, STORAGE_KEY
from mapreport.exceptions import PersistenceError
from mapreport.models.marker import MarkerRecord

_logger = logging.getLogger(__name__)


class PersistentStore(Protocol):
    """Synchronous, origin-scoped durable key-value store."""

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...


class MemoryPersistentStore:
    """In-process store; survives only as long as the object does."""

    def __init__(self, *, origin: str = DEFAULT_ORIGIN) -> None:
        self.origin = origin
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFilePersistentStore:
    """File-backed store: one JSON document mapping origin -> {key: value}.

    Writes go to a temporary file that atomically replaces the document.
    """

    def __init__(self, path: str | Path, *, origin: str = DEFAULT_ORIGIN) -> None:
        self.path = Path(path)
        self.origin = origin

    def _read_document(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise PersistenceError(f"Cannot read {self.path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"Corrupt storage document {self.path}: {exc}") from exc
        if not isinstance(document, dict):
            raise PersistenceError(f"Storage document {self.path} is not an object")
        return document

    def get(self, key: str) -> str | None:
        scope = self._read_document().get(self.origin)
        if not isinstance(scope, dict):
            return None
        value = scope.get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        try:
            document = self._read_document()
        except PersistenceError:
            _logger.warning("Replacing unreadable storage document %s", self.path)
            document = {}
        scope = document.get(self.origin)
        if not isinstance(scope, dict):
            scope = {}
            document[self.origin] = scope
        scope[key] = value

        data = json.dumps(document, ensure_ascii=False, separators=(",", ":"))
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(data, encoding="utf-8")
            tmp.replace(self.path)
        except OSError as exc:
            raise PersistenceError(f"Cannot write {self.path}: {exc}", key=key) from exc


class MarkerPersistence:
    """Save/load the marker collection as a single serialized blob."""

    def __init__(self, store: PersistentStore, *, key: str = STORAGE_KEY) -> None:
        self.store = store
        self.key = key

    def load(self) -> list[MarkerRecord]:
        """Read the persisted collection.

        Never raises: a missing, unreadable or malformed blob yields ``[]`` and
        invalid entries are dropped individually.
        """
        try:
            raw = self.store.get(self.key)
        except PersistenceError as exc:
            _logger.warning("Reading persisted markers failed: %s", exc)
            return []
        except Exception:
            _logger.warning("Reading persisted markers under %r failed", self.key, exc_info=True)
            return []
        if raw is not None and not isinstance(raw, str):
            _logger.warning("Discarding persisted markers under %r: unexpected %s", self.key, type(raw).__name__)
            return []
        if raw is None or not raw.strip():
            return []

        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            _logger.warning("Discarding malformed persisted markers under %r", self.key)
            return []

        items: Iterable[Any]
        if isinstance(decoded, list):
            items = decoded
        elif isinstance(decoded, dict):
            items = decoded.values()
        else:
            _logger.warning("Discarding persisted markers under %r: unexpected %s", self.key, type(decoded).__name__)
            return []

        records: list[MarkerRecord] = []
        dropped = 0
        for item in items:
            try:
                records.append(MarkerRecord.model_validate(item))
            except ValidationError:
                dropped += 1
        if dropped:
            _logger.warning("Dropped %d invalid persisted marker(s)", dropped)
        return records

    def save(self, records: Iterable[MarkerRecord]) -> bool:
        """Write the collection. Returns ``False`` (and logs) on failure."""
        blob = json.dumps([record.to_storage() for record in records], separators=(",", ":"))
        try:
            self.store.set(self.key, blob)
        except PersistenceError as exc:
            _logger.warning("Persisting markers failed: %s", exc)
            return False
        except Exception:
            _logger.warning("Persisting markers under %r failed", self.key, exc_info=True)
            return False
        return True


class DebouncedWriter:
    """Coalesce bursts of persistence requests into one write.

    The snapshot is taken when the write happens, so the last state wins.
    A failed write leaves the writer dirty; the next request retries.
    """

    def __init__(
        self,
        persistence: MarkerPersistence,
        snapshot: Callable[[], Iterable[MarkerRecord]],
        *,
        delay: float,
    ) -> None:
        self._persistence = persistence
        self._snapshot = snapshot
        self._delay = delay
        self._handle: asyncio.TimerHandle | None = None
        self._dirty = False
        self.write_count = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def dirty(self) -> bool:
        return self._dirty

    def schedule(self) -> None:
        self._dirty = True
        if self._handle is not None:
            return
        if self._delay <= 0:
            self.flush()
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush()
            return
        self._handle = loop.call_later(self._delay, self.flush)

    def flush(self) -> bool:
        """Write now if anything changed since the last successful write."""
        self.cancel()
        if not self._dirty:
            return True
        ok = self._persistence.save(self._snapshot())
        self.write_count += 1
        self._dirty = not ok
        return ok

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
