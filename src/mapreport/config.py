"""Client configuration for mapreport."""

from __future__ import annotations

import dataclasses
import os
from datetime import timedelta
from typing import Any

from mapreport._constants import (
    DEFAULT_CALLBACK_NAME,
    DEFAULT_CENTER,
    DEFAULT_LIBRARIES,
    DEFAULT_ORIGIN,
    DEFAULT_PROVIDER_VERSION,
    DEFAULT_STATIC_SIZE,
    DEFAULT_STATIC_ZOOM,
    DESKTOP_DEFAULTS,
    LOW_MEMORY_DEFAULTS,
    MARKER_TTL_SECONDS,
    PROVIDER_SCRIPT_URL,
    REMOTE_SYNC_INTERVAL_SECONDS,
    STATIC_MAP_URL,
    STORAGE_KEY,
    SWEEP_INTERVAL_SECONDS,
)
from mapreport.exceptions import MapReportConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_list(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclasses.dataclass(frozen=True)
class ProviderCredentials:
    """One credential set for the script-injected mapping provider.

    Parameters
    ----------
    api_key : str
        Provider API key, sent as the ``key`` query parameter.
    libraries : tuple of str
        Optional provider feature libraries (e.g. ``("places",)``).
    version : str
        Provider release channel.
    """

    api_key: str
    libraries: tuple[str, ...] = DEFAULT_LIBRARIES
    version: str = DEFAULT_PROVIDER_VERSION


@dataclasses.dataclass(frozen=True)
class MapReportConfig:
    """Library configuration.

    Durations are in seconds.

    Parameters
    ----------
    primary : ProviderCredentials or None
        Credential set tried first. ``None`` skips the interactive provider
        and starts the degradation chain at the static-image renderer.
    backup : ProviderCredentials or None
        Alternate credential set tried once after the primary fails.
    provider_url : str
        Base URL of the provider script.
    static_map_url : str
        Base URL of the static-image renderer.
    callback_name : str
        Name of the global callback the provider script announces readiness
        through.  Duplicate requests naming it are merged into the coordinator's
        callback queue.
    default_center : tuple of float
        ``(lat, lng)`` centre of the static-image fallback.
    static_zoom : int
        Zoom level of the static-image fallback.
    static_size : tuple of int
        ``(width, height)`` in pixels of the static-image fallback.
    load_timeout : float
        Seconds a single provider load attempt may take before the chain
        advances.
    low_memory : bool
        Constrained device (mobile) mode.  Selects smaller batches, longer
        delays and a lower capacity when those are not given explicitly.
    marker_ttl : float
        Marker time-to-live.  Set to ``0`` to disable expiry.
    capacity : int
        Maximum number of markers kept in memory.
    batch_size : int
        Records processed per chunk by batched loading and materializing.
    batch_delay : float
        Pause between chunks, yielding to the event loop.
    save_debounce : float
        Window in which persistence writes are coalesced.
    sweep_interval : float
        Seconds between periodic eviction sweeps.
    storage_key : str
        Persistent store key holding the serialized marker collection.
    origin : str
        Scope of the persistent store (the page origin).
    remote_base_url : str or None
        Edge API base URL.  ``None`` runs without a remote store.
    remote_sync_interval : float
        Seconds between remote sync passes.
    remote_timeout : float
        Per-request timeout for the remote store.
    """

    primary: ProviderCredentials | None = None
    backup: ProviderCredentials | None = None
    provider_url: str = PROVIDER_SCRIPT_URL
    static_map_url: str = STATIC_MAP_URL
    callback_name: str = DEFAULT_CALLBACK_NAME
    default_center: tuple[float, float] = DEFAULT_CENTER
    static_zoom: int = DEFAULT_STATIC_ZOOM
    static_size: tuple[int, int] = DEFAULT_STATIC_SIZE
    load_timeout: float = float(DESKTOP_DEFAULTS["load_timeout"])
    low_memory: bool = False
    marker_ttl: float = MARKER_TTL_SECONDS
    capacity: int = int(DESKTOP_DEFAULTS["capacity"])
    batch_size: int = int(DESKTOP_DEFAULTS["batch_size"])
    batch_delay: float = float(DESKTOP_DEFAULTS["batch_delay"])
    save_debounce: float = float(DESKTOP_DEFAULTS["save_debounce"])
    sweep_interval: float = SWEEP_INTERVAL_SECONDS
    storage_key: str = STORAGE_KEY
    origin: str = DEFAULT_ORIGIN
    remote_base_url: str | None = None
    remote_sync_interval: float = REMOTE_SYNC_INTERVAL_SECONDS
    remote_timeout: float = 10.0

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise MapReportConfigError(f"capacity must be >= 1, got {self.capacity}")
        if self.batch_size < 1:
            raise MapReportConfigError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.load_timeout <= 0:
            raise MapReportConfigError(f"load_timeout must be > 0, got {self.load_timeout}")
        for name in ("batch_delay", "save_debounce", "marker_ttl"):
            if getattr(self, name) < 0:
                raise MapReportConfigError(f"{name} must be >= 0, got {getattr(self, name)}")
        if self.sweep_interval <= 0:
            raise MapReportConfigError(f"sweep_interval must be > 0, got {self.sweep_interval}")

    @property
    def ttl(self) -> timedelta | None:
        """Marker TTL as a timedelta, or ``None`` when expiry is disabled."""
        if self.marker_ttl <= 0:
            return None
        return timedelta(seconds=self.marker_ttl)

    @classmethod
    def for_device(cls, *, low_memory: bool, **overrides: Any) -> MapReportConfig:
        """Create configuration with the device-dependent defaults applied.

        Explicit keyword arguments override the device defaults.
        """
        defaults = LOW_MEMORY_DEFAULTS if low_memory else DESKTOP_DEFAULTS
        kwargs: dict[str, Any] = dict(defaults)
        kwargs["low_memory"] = low_memory
        kwargs.update(overrides)
        return cls(**kwargs)

    @classmethod
    def from_env(cls, **overrides: Any) -> MapReportConfig:
        """Create configuration from environment variables.

        Reads ``MAPREPORT_API_KEY``, ``MAPREPORT_BACKUP_API_KEY`` and the
        optional ``MAPREPORT_*`` tuning variables. Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        MapReportConfig
            Populated configuration.
        """
        env = os.environ

        libraries_env = env.get("MAPREPORT_LIBRARIES")
        libraries = _env_list(libraries_env) if libraries_env is not None else DEFAULT_LIBRARIES
        version = env.get("MAPREPORT_PROVIDER_VERSION", DEFAULT_PROVIDER_VERSION)

        config_kwargs: dict[str, Any] = {}
        primary_key = env.get("MAPREPORT_API_KEY")
        if primary_key:
            config_kwargs["primary"] = ProviderCredentials(primary_key, libraries, version)
        backup_key = env.get("MAPREPORT_BACKUP_API_KEY")
        if backup_key:
            config_kwargs["backup"] = ProviderCredentials(backup_key, libraries, version)

        _ENV_STR_MAP = {
            "MAPREPORT_PROVIDER_URL": "provider_url",
            "MAPREPORT_STATIC_MAP_URL": "static_map_url",
            "MAPREPORT_CALLBACK_NAME": "callback_name",
            "MAPREPORT_STORAGE_KEY": "storage_key",
            "MAPREPORT_ORIGIN": "origin",
            "MAPREPORT_REMOTE_BASE_URL": "remote_base_url",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_FLOAT_MAP = {
            "MAPREPORT_LOAD_TIMEOUT": "load_timeout",
            "MAPREPORT_MARKER_TTL": "marker_ttl",
            "MAPREPORT_BATCH_DELAY": "batch_delay",
            "MAPREPORT_SAVE_DEBOUNCE": "save_debounce",
            "MAPREPORT_SWEEP_INTERVAL": "sweep_interval",
            "MAPREPORT_REMOTE_SYNC_INTERVAL": "remote_sync_interval",
            "MAPREPORT_REMOTE_TIMEOUT": "remote_timeout",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = float(val)

        _ENV_INT_MAP = {
            "MAPREPORT_CAPACITY": "capacity",
            "MAPREPORT_BATCH_SIZE": "batch_size",
        }
        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = int(val)

        low_memory = overrides.pop("low_memory", None)
        if low_memory is None:
            low_memory = _env_bool(env.get("MAPREPORT_LOW_MEMORY"), False)

        config_kwargs.update(overrides)

        return cls.for_device(low_memory=bool(low_memory), **config_kwargs)
