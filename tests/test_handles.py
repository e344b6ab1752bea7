from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs, urlsplit

import pytest

from mapreport.config import ProviderCredentials
from mapreport.models import MarkerRecord, Position, ProviderKind
from mapreport.provider.handles import (
    NullProvider,
    RealProvider,
    StaticImageProvider,
    StaticPin,
    build_static_map_url,
)
from mapreport.provider.loader import build_script_url

_CENTER = (-37.8136, 144.9631)


@dataclass
class _FakeVisual:
    title: str
    detached: bool = False

    def detach(self) -> None:
        self.detached = True


@dataclass
class _FakeSdk:
    surfaces: list[dict[str, Any]] = field(default_factory=list)
    markers: list[_FakeVisual] = field(default_factory=list)

    def create_surface(self, **options: Any) -> dict[str, Any]:
        self.surfaces.append(options)
        return options

    def create_marker(self, surface: Any, *, lat: float, lng: float, title: str) -> _FakeVisual:
        visual = _FakeVisual(title)
        self.markers.append(visual)
        return visual


def _record(marker_id: str, lat: float, lng: float) -> MarkerRecord:
    return MarkerRecord(id=marker_id, position=Position(lat=lat, lng=lng), description=f"report {marker_id}")


def _static() -> StaticImageProvider:
    return StaticImageProvider(image_url="https://static/img.png", center=_CENTER, zoom=14, size=(600, 400))


def test_build_script_url() -> None:
    url = build_script_url(
        "https://maps.example.com/api/js",
        ProviderCredentials("K1", ("places",), "weekly"),
        callback_name="ready",
    )
    query = parse_qs(urlsplit(url).query)
    assert url.startswith("https://maps.example.com/api/js?")
    assert query == {"key": ["K1"], "libraries": ["places"], "v": ["weekly"], "callback": ["ready"]}


def test_build_static_map_url() -> None:
    url = build_static_map_url("https://static/map", center=_CENTER, zoom=14, size=(600, 400), api_key="K")
    query = parse_qs(urlsplit(url).query)
    assert query["center"] == ["-37.8136,144.9631"]
    assert query["zoom"] == ["14"]
    assert query["size"] == ["600x400"]
    assert query["key"] == ["K"]


def test_real_provider_creates_surface_once() -> None:
    sdk = _FakeSdk()
    provider = RealProvider(sdk, strategy="primary", surface_options={"zoom": 13})

    first = provider.create_visual(_record("a", 0, 0))
    second = provider.create_visual(_record("b", 1, 1))

    assert provider.kind == ProviderKind.REAL
    assert sdk.surfaces == [{"zoom": 13}]
    assert first is sdk.markers[0]
    assert second is sdk.markers[1]
    assert sdk.markers[0].title == "report a"


def test_static_coordinate_at_centre_pixel_is_centre() -> None:
    lat, lng = _static().coordinate_at(300, 200)
    assert lat == pytest.approx(_CENTER[0])
    assert lng == pytest.approx(_CENTER[1])


def test_static_coordinate_at_corner() -> None:
    # One image spans 0.01 * zoom degrees each way.
    lat, lng = _static().coordinate_at(0, 0)
    assert lat == pytest.approx(_CENTER[0] + 0.07)
    assert lng == pytest.approx(_CENTER[1] - 0.07)


def test_static_pixel_for_inverts_coordinate_at() -> None:
    provider = _static()
    lat, lng = provider.coordinate_at(120, 330)
    pixel = provider.pixel_for(lat, lng)
    assert pixel is not None
    assert pixel[0] == pytest.approx(120)
    assert pixel[1] == pytest.approx(330)


def test_static_visual_outside_image_is_skipped() -> None:
    provider = _static()
    assert provider.create_visual(_record("far", 10.0, 10.0)) is None

    pin = provider.create_visual(_record("near", _CENTER[0], _CENTER[1]))
    assert isinstance(pin, StaticPin)
    assert pin.marker_id == "near"
    pin.detach()
    assert pin.attached is False


def test_null_provider_is_inert() -> None:
    provider = NullProvider()
    assert provider.kind == ProviderKind.NULL
    assert provider.create_visual(_record("a", 0, 0)) is None
    assert provider.coordinate_at(1, 2) is None
