"""Data models for mapreport."""

from mapreport.models._base import MapReportBaseModel, UtcTimestamp, parse_timestamp
from mapreport.models.marker import MarkerRecord, Position
from mapreport.models.provider import ProviderKind, ProviderLoadState

__all__ = [
    "MapReportBaseModel",
    "MarkerRecord",
    "Position",
    "ProviderKind",
    "ProviderLoadState",
    "UtcTimestamp",
    "parse_timestamp",
]
