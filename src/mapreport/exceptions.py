"""Custom exception hierarchy for mapreport."""

from __future__ import annotations


class MapReportError(Exception):
    """Base exception for all mapreport errors."""


class MapReportConfigError(MapReportError):
    """Invalid or missing configuration."""


class ProviderLoadError(MapReportError):
    """The mapping provider script failed to load.

    Recovered locally by the degradation chain; never surfaced to UI code.
    """

    def __init__(self, message: str, *, strategy: str = "") -> None:
        self.strategy = strategy
        super().__init__(message)


class ProviderTimeoutError(ProviderLoadError):
    """The provider did not become ready before the load timeout."""


class InvalidRecordError(MapReportError):
    """A marker record has a malformed id or position."""

    def __init__(self, message: str, *, record_id: str | None = None) -> None:
        self.record_id = record_id
        super().__init__(message)


class PersistenceError(MapReportError):
    """Durable key-value store read or write failure."""

    def __init__(self, message: str, *, key: str = "") -> None:
        self.key = key
        super().__init__(message)


class RemoteSyncError(MapReportError):
    """Remote store failure (network, non-2xx, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)
