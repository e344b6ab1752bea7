"""Provider handles: the capability interface the rest of the library renders through.

Three implementations share the :class:`ProviderHandle` surface:

* :class:`RealProvider` wraps the interactive SDK delivered by the provider script.
* :class:`StaticImageProvider` renders onto a non-interactive static map image
  and approximates coordinates from pixel positions.
* :class:`NullProvider` accepts every call as a no-op so the app keeps running
  without a map.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable
from urllib.parse import urlencode

from mapreport.models.marker import MarkerRecord
from mapreport.models.provider import ProviderKind

_logger = logging.getLogger(__name__)


@runtime_checkable
class VisualObject(Protocol):
    """An on-map object created for one marker."""

    def detach(self) -> None:
        ...


class MapSdk(Protocol):
    """Structural interface of the interactive provider SDK."""

    def create_surface(self, **options: Any) -> Any:
        ...

    def create_marker(self, surface: Any, *, lat: float, lng: float, title: str) -> VisualObject:
        ...


class ProviderHandle(Protocol):
    """Opaque reference to a ready provider (real or fallback)."""

    @property
    def kind(self) -> ProviderKind:
        ...

    @property
    def strategy(self) -> str:
        ...

    def create_visual(self, record: MarkerRecord) -> VisualObject | None:
        ...


class RealProvider:
    """Handle over the interactive SDK."""

    def __init__(self, sdk: MapSdk, *, strategy: str, surface_options: dict[str, Any] | None = None) -> None:
        self._sdk = sdk
        self._strategy = strategy
        self._surface_options = dict(surface_options or {})
        self._surface: Any = None

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind.REAL

    @property
    def strategy(self) -> str:
        return self._strategy

    @property
    def sdk(self) -> MapSdk:
        return self._sdk

    @property
    def surface(self) -> Any:
        """The render surface, created on first use."""
        if self._surface is None:
            self._surface = self._sdk.create_surface(**self._surface_options)
        return self._surface

    def create_visual(self, record: MarkerRecord) -> VisualObject | None:
        return self._sdk.create_marker(
            self.surface,
            lat=record.position.lat,
            lng=record.position.lng,
            title=record.description,
        )

    def __repr__(self) -> str:
        return f"RealProvider(strategy={self._strategy!r})"


@dataclass(slots=True)
class StaticPin:
    """A marker drawn over the static map image at a pixel position."""

    marker_id: str
    x: float
    y: float
    attached: bool = True

    def detach(self) -> None:
        self.attached = False


def build_static_map_url(
    base_url: str,
    *,
    center: tuple[float, float],
    zoom: int,
    size: tuple[int, int],
    api_key: str | None = None,
) -> str:
    params: dict[str, Any] = {
        "center": f"{center[0]},{center[1]}",
        "zoom": zoom,
        "size": f"{size[0]}x{size[1]}",
        "scale": 2,
    }
    if api_key:
        params["key"] = api_key
    return f"{base_url}?{urlencode(params, safe=',')}"


class StaticImageProvider:
    """Non-interactive static-image renderer.

    Pixel/coordinate conversion uses a linear approximation around the image
    centre: one image width spans ``0.01 * zoom`` degrees of longitude and one
    image height ``0.01 * zoom`` degrees of latitude.  Good enough for
    click-to-approximate-coordinate; not a projection.
    """

    def __init__(
        self,
        *,
        image_url: str,
        center: tuple[float, float],
        zoom: int,
        size: tuple[int, int],
        strategy: str = "static_image",
    ) -> None:
        self.image_url = image_url
        self.center = center
        self.zoom = zoom
        self.size = size
        self._strategy = strategy

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind.STATIC_IMAGE

    @property
    def strategy(self) -> str:
        return self._strategy

    @property
    def _span(self) -> float:
        return 0.01 * self.zoom

    def coordinate_at(self, x: float, y: float) -> tuple[float, float]:
        """Approximate ``(lat, lng)`` for a click at pixel ``(x, y)``."""
        width, height = self.size
        lat = self.center[0] + ((height / 2 - y) / height) * self._span
        lng = self.center[1] + ((x - width / 2) / width) * self._span
        return lat, lng

    def pixel_for(self, lat: float, lng: float) -> tuple[float, float] | None:
        """Pixel position of ``(lat, lng)``, or ``None`` if outside the image."""
        width, height = self.size
        x = width / 2 + (lng - self.center[1]) / self._span * width
        y = height / 2 - (lat - self.center[0]) / self._span * height
        if not (0 <= x <= width and 0 <= y <= height):
            return None
        return x, y

    def create_visual(self, record: MarkerRecord) -> VisualObject | None:
        pixel = self.pixel_for(record.position.lat, record.position.lng)
        if pixel is None:
            _logger.debug("Marker %s lies outside the static map image", record.id)
            return None
        return StaticPin(marker_id=record.id, x=pixel[0], y=pixel[1])

    def __repr__(self) -> str:
        return f"StaticImageProvider(center={self.center!r}, zoom={self.zoom})"


class NullProvider:
    """Inert stub: every call is a no-op."""

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind.NULL

    @property
    def strategy(self) -> str:
        return "stub"

    def create_visual(self, record: MarkerRecord) -> VisualObject | None:
        return None

    def coordinate_at(self, x: float, y: float) -> tuple[float, float] | None:
        return None

    def __repr__(self) -> str:
        return "NullProvider()"
