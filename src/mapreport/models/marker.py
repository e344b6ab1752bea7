"""Marker record model."""

from __future__ import annotations

from typing import Any

from pydantic import Field, field_validator, model_validator

from mapreport.models._base import MapReportBaseModel, UtcTimestamp, utcnow

# Alternate keys seen in persisted blobs and edge API payloads.
_CREATED_AT_KEYS = ("createdAt", "created_at", "timestamp", "time")
_IMAGE_KEYS = ("imageRef", "image_ref", "imageUrl", "image")


class Position(MapReportBaseModel):
    """A WGS84 coordinate.

    Parameters
    ----------
    lat : float
        Latitude in degrees, ``-90`` to ``90``.
    lng : float
        Longitude in degrees, ``-180`` to ``180``.
    """

    lat: float = Field(ge=-90.0, le=90.0)
    lng: float = Field(ge=-180.0, le=180.0)


class MarkerRecord(MapReportBaseModel):
    """A user-created point annotation ("report").

    Parameters
    ----------
    id : str
        Unique identifier within the marker store.
    position : Position
        Where the report was dropped.
    description : str
        Free-text description.
    created_at : datetime
        Creation time (UTC).  Drives TTL eviction.
    image_ref : str or None
        Reference to an attached image, if any.
    """

    id: str
    position: Position
    description: str = ""
    created_at: UtcTimestamp = Field(default_factory=utcnow)
    image_ref: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_shapes(cls, values: Any) -> Any:
        """Lift flat ``lat``/``lng`` into ``position`` and map alternate key names."""
        if not isinstance(values, dict):
            return values
        working = dict(values)

        if "position" not in working and ("lat" in working or "lng" in working):
            working["position"] = {"lat": working.pop("lat", None), "lng": working.pop("lng", None)}

        if "createdAt" not in working and "created_at" not in working:
            for key in _CREATED_AT_KEYS:
                if working.get(key) not in (None, ""):
                    working["createdAt"] = working[key]
                    break

        if "imageRef" not in working and "image_ref" not in working:
            for key in _IMAGE_KEYS:
                if isinstance(working.get(key), str) and working[key]:
                    working["imageRef"] = working[key]
                    break

        if working.get("description") is None:
            working.pop("description", None)
        return working

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> str:
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            raise ValueError("id must be a string")
        marker_id = str(value).strip()
        if not marker_id:
            raise ValueError("id must be non-empty")
        return marker_id

    def to_storage(self) -> dict[str, Any]:
        """Serialize to the camelCase shape used by the persisted blob."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)
