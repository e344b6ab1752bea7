"""Outbound provider script requests."""

from __future__ import annotations

import logging
from typing import Any, Protocol
from urllib.parse import urlencode

import aiohttp

from mapreport._constants import USER_AGENT
from mapreport._redact import redact_url
from mapreport.config import ProviderCredentials
from mapreport.exceptions import ProviderLoadError

_logger = logging.getLogger(__name__)


class ScriptLoader(Protocol):
    """Structural interface for the host's script-injection mechanism.

    ``load`` resolves with the provider payload once the script has loaded
    and raises on a script error.
    """

    async def load(self, url: str) -> Any:
        ...


def build_script_url(base_url: str, credentials: ProviderCredentials, *, callback_name: str | None = None) -> str:
    """Build the provider script URL for one credential set."""
    params: dict[str, str] = {"key": credentials.api_key}
    if credentials.libraries:
        params["libraries"] = ",".join(credentials.libraries)
    if credentials.version:
        params["v"] = credentials.version
    if callback_name:
        params["callback"] = callback_name
    return f"{base_url}?{urlencode(params, safe=',')}"


class HttpScriptLoader:
    """Fetch the provider script over HTTP.

    The returned payload is the script body; an ``sdk_factory`` turns it into
    a :class:`~mapreport.provider.handles.MapSdk`.
    """

    def __init__(self, http_session: aiohttp.ClientSession) -> None:
        self._http = http_session

    async def load(self, url: str) -> str:
        safe_url = redact_url(url)
        _logger.debug("GET %s", safe_url)
        try:
            async with self._http.get(url, headers={"user-agent": USER_AGENT}) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise ProviderLoadError(f"HTTP {resp.status} loading provider script {safe_url}")
        except ProviderLoadError:
            raise
        except aiohttp.ClientError as exc:
            raise ProviderLoadError(f"Provider script request {safe_url} failed: {exc}") from exc
        if not text.strip():
            raise ProviderLoadError(f"Empty provider script from {safe_url}")
        return text
