"""Provider load state enums."""

from __future__ import annotations

from enum import StrEnum


class ProviderLoadState(StrEnum):
    """Lifecycle of the process-wide provider load.

    ``UNLOADED -> LOADING -> LOADED | FAILED``; ``FAILED`` re-enters
    ``LOADING`` only when the degradation chain supplies another strategy.
    ``DEGRADED`` is terminal: the inert stub stays active.
    """

    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"
    DEGRADED = "degraded"

    @property
    def is_settled(self) -> bool:
        return self in (ProviderLoadState.LOADED, ProviderLoadState.DEGRADED)


class ProviderKind(StrEnum):
    """Which renderer a provider handle drives."""

    REAL = "real"
    STATIC_IMAGE = "static_image"
    NULL = "null"
