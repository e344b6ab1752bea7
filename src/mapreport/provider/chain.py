"""Degradation chain: ordered provider load strategies.

Default order:

1. primary credential set (interactive provider script)
2. backup credential set (only when configured)
3. static-image renderer
4. inert stub

Selection is a pure function of the failure count, so the chain never
re-attempts a strategy that already failed.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol

from mapreport.config import MapReportConfig, ProviderCredentials
from mapreport.exceptions import MapReportConfigError, ProviderLoadError
from mapreport.provider.handles import (
    MapSdk,
    NullProvider,
    ProviderHandle,
    RealProvider,
    StaticImageProvider,
    build_static_map_url,
)
from mapreport.provider.loader import build_script_url

_logger = logging.getLogger(__name__)

ScriptRequest = Callable[[str], Awaitable[Any]]
SdkFactory = Callable[[Any], MapSdk]


def _identity_sdk(payload: Any) -> MapSdk:
    return payload  # type: ignore[no-any-return]


class LoadStrategy(Protocol):
    """One way of obtaining a provider handle."""

    @property
    def name(self) -> str:
        ...

    async def attempt(self, request: ScriptRequest) -> ProviderHandle:
        """Obtain a handle; raise :class:`ProviderLoadError` on failure.

        *request* issues the single outbound script request for this attempt.
        """
        ...


class ScriptStrategy:
    """Load the interactive provider with one credential set."""

    def __init__(
        self,
        name: str,
        credentials: ProviderCredentials,
        *,
        provider_url: str,
        callback_name: str | None = None,
        sdk_factory: SdkFactory | None = None,
        surface_options: dict[str, Any] | None = None,
    ) -> None:
        self._name = name
        self._credentials = credentials
        self._provider_url = provider_url
        self._callback_name = callback_name
        self._sdk_factory = sdk_factory or _identity_sdk
        self._surface_options = surface_options

    @property
    def name(self) -> str:
        return self._name

    @property
    def url(self) -> str:
        return build_script_url(self._provider_url, self._credentials, callback_name=self._callback_name)

    async def attempt(self, request: ScriptRequest) -> ProviderHandle:
        payload = await request(self.url)
        try:
            sdk = self._sdk_factory(payload)
        except Exception as exc:
            raise ProviderLoadError(f"Provider payload rejected: {exc}", strategy=self._name) from exc
        if sdk is None:
            raise ProviderLoadError("Provider script loaded without an SDK", strategy=self._name)
        return RealProvider(sdk, strategy=self._name, surface_options=self._surface_options)


class StaticImageStrategy:
    """Fall back to a static map image (no outbound script request)."""

    def __init__(
        self,
        *,
        base_url: str,
        center: tuple[float, float],
        zoom: int,
        size: tuple[int, int],
        api_key: str | None = None,
    ) -> None:
        self._base_url = base_url
        self._center = center
        self._zoom = zoom
        self._size = size
        self._api_key = api_key

    @property
    def name(self) -> str:
        return "static_image"

    async def attempt(self, request: ScriptRequest) -> ProviderHandle:
        image_url = build_static_map_url(
            self._base_url,
            center=self._center,
            zoom=self._zoom,
            size=self._size,
            api_key=self._api_key,
        )
        return StaticImageProvider(
            image_url=image_url,
            center=self._center,
            zoom=self._zoom,
            size=self._size,
            strategy=self.name,
        )


class NullStrategy:
    """The inert stub. Never fails."""

    @property
    def name(self) -> str:
        return "stub"

    async def attempt(self, request: ScriptRequest) -> ProviderHandle:
        return NullProvider()


class DegradationChain:
    """Ordered fallback strategies, advanced once per failure."""

    def __init__(self, strategies: Sequence[LoadStrategy]) -> None:
        if not strategies:
            raise MapReportConfigError("degradation chain needs at least one strategy")
        self._strategies: tuple[LoadStrategy, ...] = tuple(strategies)
        self._failures = 0

    @classmethod
    def default(
        cls,
        config: MapReportConfig,
        *,
        sdk_factory: SdkFactory | None = None,
        surface_options: dict[str, Any] | None = None,
    ) -> DegradationChain:
        """Build the chain described by *config*."""
        strategies: list[LoadStrategy] = []
        if config.primary is not None:
            strategies.append(
                ScriptStrategy(
                    "primary",
                    config.primary,
                    provider_url=config.provider_url,
                    callback_name=config.callback_name,
                    sdk_factory=sdk_factory,
                    surface_options=surface_options,
                )
            )
        if config.backup is not None:
            strategies.append(
                ScriptStrategy(
                    "backup",
                    config.backup,
                    provider_url=config.provider_url,
                    callback_name=config.callback_name,
                    sdk_factory=sdk_factory,
                    surface_options=surface_options,
                )
            )
        static_key = config.primary.api_key if config.primary is not None else None
        strategies.append(
            StaticImageStrategy(
                base_url=config.static_map_url,
                center=config.default_center,
                zoom=config.static_zoom,
                size=config.static_size,
                api_key=static_key,
            )
        )
        strategies.append(NullStrategy())
        return cls(strategies)

    def strategy_for(self, failures: int) -> LoadStrategy | None:
        """Strategy to use after *failures* failed attempts, or ``None`` when exhausted."""
        if failures < 0 or failures >= len(self._strategies):
            return None
        return self._strategies[failures]

    @property
    def failures(self) -> int:
        return self._failures

    @property
    def current(self) -> LoadStrategy | None:
        return self.strategy_for(self._failures)

    @property
    def exhausted(self) -> bool:
        return self.current is None

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(strategy.name for strategy in self._strategies)

    def next(self) -> LoadStrategy | None:
        """Record a failure of the current strategy and return the following one."""
        if self._failures < len(self._strategies):
            self._failures += 1
        following = self.current
        _logger.debug(
            "Degradation chain advanced to %s after %d failure(s)",
            following.name if following is not None else "<exhausted>",
            self._failures,
        )
        return following

    def __len__(self) -> int:
        return len(self._strategies)
