"""Interceptable resource-request channel.

Every script request in the host goes through one :class:`ResourceChannel`.
A single interceptor (the provider load coordinator) may register with it and
claim requests before they reach the network; the owner issues its own
requests through :meth:`ResourceChannel.dispatch`, which bypasses
interception.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Protocol
from urllib.parse import parse_qs, urlsplit

from mapreport._redact import redact_url
from mapreport.exceptions import MapReportConfigError
from mapreport.provider.loader import ScriptLoader

_logger = logging.getLogger(__name__)

RequestCallback = Callable[[Any], None]


class RequestInterceptor(Protocol):
    def intercept(self, url: str, callback: RequestCallback | None) -> bool:
        """Return ``True`` to claim (and suppress) the request."""
        ...


def callback_name_from_url(url: str) -> str | None:
    """Extract the ``callback=`` query parameter of a script URL."""
    values = parse_qs(urlsplit(url).query).get("callback")
    if not values:
        return None
    name = values[0].strip()
    return name or None


class ResourceChannel:
    """Single registration point for script-request interception."""

    def __init__(self, loader: ScriptLoader) -> None:
        self._loader = loader
        self._interceptor: RequestInterceptor | None = None
        self._callbacks: dict[str, RequestCallback] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self.suppressed_count = 0
        self.passed_count = 0

    @property
    def interceptor(self) -> RequestInterceptor | None:
        return self._interceptor

    def register(self, interceptor: RequestInterceptor) -> None:
        if self._interceptor is not None and self._interceptor is not interceptor:
            raise MapReportConfigError("a request interceptor is already registered on this channel")
        self._interceptor = interceptor

    def unregister(self, interceptor: RequestInterceptor) -> None:
        if self._interceptor is interceptor:
            self._interceptor = None

    def define_callback(self, name: str, callback: RequestCallback) -> None:
        """Register a named callback that script URLs can refer to via ``callback=``."""
        self._callbacks[name] = callback

    def resolve_callback(self, url: str) -> RequestCallback | None:
        name = callback_name_from_url(url)
        if name is None:
            return None
        return self._callbacks.get(name)

    def request(self, url: str, callback: RequestCallback | None = None) -> bool:
        """Request a script on behalf of host code.

        Returns ``True`` when the registered interceptor claimed (suppressed)
        the request.  Otherwise the script is loaded in the background and
        *callback*, if any, receives the payload.
        """
        if callback is None:
            callback = self.resolve_callback(url)

        interceptor = self._interceptor
        if interceptor is not None and interceptor.intercept(url, callback):
            self.suppressed_count += 1
            return True

        self.passed_count += 1
        task = asyncio.get_running_loop().create_task(self._load_for_host(url, callback))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return False

    async def _load_for_host(self, url: str, callback: RequestCallback | None) -> None:
        try:
            payload = await self._loader.load(url)
        except Exception:
            _logger.warning("Script request %s failed", redact_url(url), exc_info=True)
            return
        if callback is None:
            return
        try:
            callback(payload)
        except Exception:
            _logger.warning("Script callback for %s failed", redact_url(url), exc_info=True)

    async def dispatch(self, url: str) -> Any:
        """Issue an outbound request for the channel owner (no interception)."""
        _logger.debug("Dispatching script request %s", redact_url(url))
        return await self._loader.load(url)

    def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
