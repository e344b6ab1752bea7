"""Internal constants shared across the library."""

PROVIDER_SCRIPT_URL = "https://maps.googleapis.com/maps/api/js"
STATIC_MAP_URL = "https://maps.googleapis.com/maps/api/staticmap"
DEFAULT_CALLBACK_NAME = "googleMapsLoadedCallback"
DEFAULT_LIBRARIES: tuple[str, ...] = ("places",)
DEFAULT_PROVIDER_VERSION = "weekly"

# Melbourne CBD.
DEFAULT_CENTER: tuple[float, float] = (-37.8136, 144.9631)
DEFAULT_STATIC_ZOOM = 14
DEFAULT_STATIC_SIZE: tuple[int, int] = (600, 400)

STORAGE_KEY = "savedMarkers"
DEFAULT_ORIGIN = "local"

MARKERS_ENDPOINT = "/api/markers"
USER_AGENT = "mapreport/1"

# ------------------------------------------------------------------
# Device-dependent tuning  (desktop, low-memory/mobile)
# ------------------------------------------------------------------

DESKTOP_DEFAULTS: dict[str, float | int] = {
    "load_timeout": 15.0,
    "capacity": 100,
    "batch_size": 5,
    "batch_delay": 0.3,
    "save_debounce": 5.0,
}

LOW_MEMORY_DEFAULTS: dict[str, float | int] = {
    "load_timeout": 10.0,
    "capacity": 20,
    "batch_size": 2,
    "batch_delay": 1.0,
    "save_debounce": 10.0,
}

MARKER_TTL_SECONDS: float = 3 * 3600
SWEEP_INTERVAL_SECONDS: float = 5 * 60
REMOTE_SYNC_INTERVAL_SECONDS: float = 60.0
