"""High-level async facade for a map-based reporting page."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

import aiohttp

from mapreport.config import MapReportConfig
from mapreport.exceptions import MapReportError
from mapreport.models.marker import MarkerRecord
from mapreport.provider.chain import SdkFactory
from mapreport.provider.coordinator import ProviderLoadCoordinator
from mapreport.provider.handles import ProviderHandle
from mapreport.provider.loader import HttpScriptLoader, ScriptLoader
from mapreport.remote import HttpRemoteStore, RemoteStore
from mapreport.store.events import RecordOrigin, RemovalCause
from mapreport.store.markers import MarkerStore
from mapreport.store.materializer import BatchMaterializer, MaterializeResult
from mapreport.store.persistent import PersistentStore
from mapreport.store.policy import EvictionPolicy, EvictionScheduler, SweepResult
from mapreport.sync import RemoteSync, SyncResult

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MapReportApp:
    """Wire the provider coordinator, marker store, eviction and sync together.

    Usage::

        async with MapReportApp(config, persistent_store=store) as app:
            await app.ensure_map()
            await app.add_report(-37.81, 144.96, "Pothole")
    """

    def __init__(
        self,
        config: MapReportConfig | None = None,
        *,
        loader: ScriptLoader | None = None,
        sdk_factory: SdkFactory | None = None,
        surface_options: dict[str, Any] | None = None,
        persistent_store: PersistentStore | None = None,
        remote: RemoteStore | None = None,
        http_session: aiohttp.ClientSession | None = None,
        on_notice: Callable[[str], None] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config or MapReportConfig.from_env()
        self._loader = loader
        self._sdk_factory = sdk_factory
        self._surface_options = surface_options
        self._remote = remote
        self._http_session = http_session
        self._external_session = http_session is not None
        self._on_notice = on_notice
        self._clock = clock

        self._store = MarkerStore.from_config(self._config, persistent_store)
        self._policy = EvictionPolicy.from_config(self._config, clock=clock)
        self._scheduler = EvictionScheduler(self._policy, self._store, interval=self._config.sweep_interval)
        self._materializer = BatchMaterializer.from_config(self._config, self._store, is_expired=self._policy.is_expired)
        self._coordinator: ProviderLoadCoordinator | None = None
        self._sync: RemoteSync | None = None

    async def __aenter__(self) -> MapReportApp:
        needs_http = self._loader is None or (self._remote is None and self._config.remote_base_url)
        if needs_http and self._http_session is None:
            self._http_session = aiohttp.ClientSession()

        loader = self._loader
        if loader is None:
            loader = HttpScriptLoader(self._require_session())
        self._coordinator = ProviderLoadCoordinator.from_config(
            self._config,
            loader=loader,
            sdk_factory=self._sdk_factory,
            surface_options=self._surface_options,
            on_notice=self._on_notice,
        )

        # The scheduler must be listening before the restore so its
        # BULK_LOADED sweep prunes markers that expired while closed.
        self._scheduler.start()
        restored = await self._store.load_batch(self._store.restore_records(), origin=RecordOrigin.PERSISTED)
        _logger.debug("Restored %d persisted marker(s); %d kept after sweep", restored, len(self._store))

        remote = self._remote
        if remote is None and self._config.remote_base_url:
            remote = HttpRemoteStore(
                self._config.remote_base_url,
                self._require_session(),
                timeout=self._config.remote_timeout,
            )
        if remote is not None:
            self._sync = RemoteSync(
                self._store,
                remote,
                interval=self._config.remote_sync_interval,
                batch_size=self._config.batch_size,
                batch_delay=self._config.batch_delay,
            )
            self._sync.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._sync is not None:
            await self._sync.stop()
            self._sync = None
        await self._scheduler.stop()
        self._materializer.close()
        if self._coordinator is not None:
            self._coordinator.close()
        self._store.close()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def config(self) -> MapReportConfig:
        return self._config

    @property
    def store(self) -> MarkerStore:
        return self._store

    @property
    def policy(self) -> EvictionPolicy:
        return self._policy

    @property
    def materializer(self) -> BatchMaterializer:
        return self._materializer

    @property
    def sync(self) -> RemoteSync | None:
        return self._sync

    @property
    def coordinator(self) -> ProviderLoadCoordinator:
        if self._coordinator is None:
            raise MapReportError("MapReportApp must be used as an async context manager")
        return self._coordinator

    def _require_session(self) -> aiohttp.ClientSession:
        if self._http_session is None:
            raise MapReportError("MapReportApp has no HTTP session")
        return self._http_session

    # ------------------------------------------------------------------
    # Map
    # ------------------------------------------------------------------

    async def ensure_map(self, timeout: float | None = None) -> ProviderHandle:
        """Load the provider (once) and render every stored marker."""
        handle = await self.coordinator.ensure_loaded(timeout)
        await self._materializer.materialize(None, handle)
        return handle

    async def resume(self) -> MaterializeResult | None:
        """Catch up after the host was suspended: sweep, then re-render."""
        self._scheduler.run_once()
        coordinator = self.coordinator
        if not coordinator.state.is_settled or coordinator.handle is None:
            return None
        return await self._materializer.materialize(None, coordinator.handle)

    def sweep(self) -> SweepResult:
        return self._scheduler.run_once()

    async def sync_now(self) -> SyncResult | None:
        if self._sync is None:
            return None
        return await self._sync.sync()

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    async def add_report(
        self,
        lat: float,
        lng: float,
        description: str = "",
        *,
        image_ref: str | None = None,
        marker_id: str | None = None,
    ) -> MarkerRecord | None:
        """Create a marker at ``(lat, lng)``.

        Returns the stored record, or ``None`` when the input was invalid or
        an identical copy is already stored.
        """
        payload: dict[str, Any] = {
            "id": marker_id or uuid.uuid4().hex,
            "position": {"lat": lat, "lng": lng},
            "description": description,
            "createdAt": self._clock(),
        }
        if image_ref is not None:
            payload["imageRef"] = image_ref
        return await self.add(payload)

    async def add(self, record: MarkerRecord | Mapping[str, Any]) -> MarkerRecord | None:
        """Insert *record* locally and render it when the map is ready."""
        parsed = self._store.coerce(record)
        if parsed is None or not self._store.add(parsed):
            return None
        stored = self._store.get(parsed.id)
        if stored is None:
            return None

        coordinator = self._coordinator
        if coordinator is not None and coordinator.state.is_settled and coordinator.handle is not None:
            await self._materializer.materialize([stored], coordinator.handle)
        return stored

    def remove_report(self, marker_id: str) -> bool:
        return self._store.remove(marker_id, cause=RemovalCause.EXPLICIT)
