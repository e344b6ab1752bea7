"""Remote marker store: the edge API's ``/api/markers`` resource."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import aiohttp
from pydantic import ValidationError

from mapreport._constants import MARKERS_ENDPOINT, USER_AGENT
from mapreport._redact import redact_for_log
from mapreport.exceptions import RemoteSyncError
from mapreport.models.marker import MarkerRecord

_logger = logging.getLogger(__name__)


class RemoteStore(Protocol):
    """Structural interface of the remote store.

    Every operation is independently fallible with :class:`RemoteSyncError`.
    """

    async def list_all(self) -> list[MarkerRecord]:
        ...

    async def get(self, marker_id: str) -> MarkerRecord | None:
        ...

    async def create(self, record: MarkerRecord) -> MarkerRecord:
        ...

    async def delete(self, marker_id: str) -> bool:
        ...


def _parse_records(payload: Any, *, endpoint: str) -> list[MarkerRecord]:
    if isinstance(payload, dict):
        items = list(payload.values())
    elif isinstance(payload, list):
        items = payload
    else:
        raise RemoteSyncError(f"Unexpected marker listing from {endpoint}", endpoint=endpoint)

    records: list[MarkerRecord] = []
    for item in items:
        try:
            records.append(MarkerRecord.model_validate(item))
        except ValidationError:
            _logger.debug("Skipping invalid remote marker %s", redact_for_log(item))
    return records


def _to_wire(record: MarkerRecord) -> dict[str, Any]:
    """Serialize for the edge API, which validates flat ``lat``/``lng``."""
    payload = record.to_storage()
    payload["lat"] = record.position.lat
    payload["lng"] = record.position.lng
    payload["timestamp"] = payload["createdAt"]
    return payload


class HttpRemoteStore:
    """JSON-over-HTTP client for the edge API."""

    def __init__(
        self,
        base_url: str,
        http_session: aiohttp.ClientSession,
        *,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        payload: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> Any:
        url = f"{self._base_url}{endpoint}"
        headers = {"accept": "application/json", "user-agent": USER_AGENT}
        body: str | None = None
        if payload is not None:
            headers["content-type"] = "application/json; charset=UTF-8"
            body = json.dumps(payload, separators=(",", ":"))

        _logger.debug("%s %s", method, url)

        try:
            async with self._http.request(method, url, data=body, headers=headers, timeout=self._timeout) as resp:
                text = await resp.text()
                if resp.status == 404 and allow_not_found:
                    return None
                if resp.status >= 300:
                    raise RemoteSyncError(
                        f"HTTP {resp.status} from {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except RemoteSyncError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise RemoteSyncError(f"Request to {endpoint} failed: {exc}", endpoint=endpoint) from exc

        if not text.strip():
            return {}
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise RemoteSyncError(f"Invalid JSON from {endpoint}: {text[:200]}", endpoint=endpoint) from exc

    async def list_all(self) -> list[MarkerRecord]:
        payload = await self._request("GET", MARKERS_ENDPOINT)
        return _parse_records(payload, endpoint=MARKERS_ENDPOINT)

    async def get(self, marker_id: str) -> MarkerRecord | None:
        endpoint = f"{MARKERS_ENDPOINT}/{marker_id}"
        payload = await self._request("GET", endpoint, allow_not_found=True)
        if payload is None:
            return None
        try:
            return MarkerRecord.model_validate(payload)
        except ValidationError as exc:
            raise RemoteSyncError(f"Invalid marker from {endpoint}", endpoint=endpoint) from exc

    async def create(self, record: MarkerRecord) -> MarkerRecord:
        payload = await self._request("POST", MARKERS_ENDPOINT, payload=_to_wire(record))
        stored = payload.get("marker") if isinstance(payload, dict) else None
        if not isinstance(stored, dict):
            return record
        try:
            return MarkerRecord.model_validate(stored)
        except ValidationError:
            _logger.debug("Remote echoed an unparseable marker for %s; keeping local copy", record.id)
            return record

    async def delete(self, marker_id: str) -> bool:
        endpoint = f"{MARKERS_ENDPOINT}/{marker_id}"
        payload = await self._request("DELETE", endpoint, allow_not_found=True)
        return payload is not None
