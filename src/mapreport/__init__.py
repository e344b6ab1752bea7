"""mapreport - Async core of a map-based location reporting page."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("mapreport")
except PackageNotFoundError:
    __version__ = "0+local"
from mapreport.app import MapReportApp
from mapreport.config import MapReportConfig, ProviderCredentials
from mapreport.exceptions import (
    InvalidRecordError,
    MapReportConfigError,
    MapReportError,
    PersistenceError,
    ProviderLoadError,
    ProviderTimeoutError,
    RemoteSyncError,
)
from mapreport.models import MarkerRecord, Position, ProviderKind, ProviderLoadState
from mapreport.provider import (
    DegradationChain,
    HttpScriptLoader,
    NullProvider,
    ProviderHandle,
    ProviderLoadCoordinator,
    RealProvider,
    ResourceChannel,
    StaticImageProvider,
    get_coordinator,
    reset_coordinator,
)
from mapreport.remote import HttpRemoteStore, RemoteStore
from mapreport.store import (
    BatchMaterializer,
    EvictionPolicy,
    EvictionScheduler,
    JsonFilePersistentStore,
    MarkerStore,
    MemoryPersistentStore,
    PersistentStore,
    RecordOrigin,
    RemovalCause,
    StoreEvent,
    StoreEventKind,
    get_marker_store,
    reset_marker_store,
)
from mapreport.sync import RemoteSync, SyncResult

__all__ = [
    "BatchMaterializer",
    "DegradationChain",
    "EvictionPolicy",
    "EvictionScheduler",
    "HttpRemoteStore",
    "HttpScriptLoader",
    "InvalidRecordError",
    "JsonFilePersistentStore",
    "MapReportApp",
    "MapReportConfig",
    "MapReportConfigError",
    "MapReportError",
    "MarkerRecord",
    "MarkerStore",
    "MemoryPersistentStore",
    "NullProvider",
    "PersistenceError",
    "PersistentStore",
    "Position",
    "ProviderCredentials",
    "ProviderHandle",
    "ProviderKind",
    "ProviderLoadCoordinator",
    "ProviderLoadError",
    "ProviderLoadState",
    "ProviderTimeoutError",
    "RealProvider",
    "RecordOrigin",
    "RemoteStore",
    "RemoteSync",
    "RemoteSyncError",
    "RemovalCause",
    "ResourceChannel",
    "StaticImageProvider",
    "StoreEvent",
    "StoreEventKind",
    "SyncResult",
    "__version__",
    "get_coordinator",
    "get_marker_store",
    "reset_coordinator",
    "reset_marker_store",
]
