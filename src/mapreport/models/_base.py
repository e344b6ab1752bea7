"""Base model and timestamp coercion shared by mapreport models.

Every model inherits from :class:`MapReportBaseModel` which provides:

* ``alias_generator=to_camel`` so the camelCase keys of the persisted
  blob and the edge API map automatically to snake_case fields.
* Frozen instances: records never mutate in place, an update replaces
  the record.
* Rejection of NaN/infinite floats.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict
from pydantic.alias_generators import to_camel

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: Any) -> datetime:
    """Coerce a creation time to a timezone-aware UTC datetime.

    Accepts datetimes (naive ones are taken as UTC), ISO-8601 strings, and
    epoch numbers in seconds **or** milliseconds.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        try:
            return value.astimezone(UTC)
        except OverflowError as exc:
            raise ValueError(f"timestamp out of range: {value!r}") from exc
    if isinstance(value, bool):
        raise ValueError("timestamp must not be a boolean")
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("timestamp must be non-empty")
        try:
            value = float(text)
        except ValueError:
            parsed = datetime.fromisoformat(text)
            return parse_timestamp(parsed)
    if isinstance(value, (int, float)):
        try:
            ts = float(value)
        except OverflowError as exc:
            raise ValueError(f"timestamp out of range: {value!r}") from exc
        if not math.isfinite(ts):
            raise ValueError("timestamp must be finite")
        if ts >= _MS_THRESHOLD:
            ts /= 1000.0
        try:
            return datetime.fromtimestamp(ts, tz=UTC)
        except (OverflowError, OSError) as exc:
            raise ValueError(f"timestamp out of range: {value!r}") from exc
    raise ValueError(f"unsupported timestamp value: {value!r}")


UtcTimestamp = Annotated[datetime, BeforeValidator(parse_timestamp)]
"""Annotated type that coerces ISO strings and epoch numbers (s or ms) to UTC datetimes."""


class MapReportBaseModel(BaseModel):
    """Base for mapreport data models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
        allow_inf_nan=False,
    )
