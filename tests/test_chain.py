from __future__ import annotations

import pytest

from mapreport.config import MapReportConfig, ProviderCredentials
from mapreport.exceptions import MapReportConfigError, ProviderLoadError
from mapreport.models import ProviderKind
from mapreport.provider.chain import DegradationChain, NullStrategy, ScriptStrategy, StaticImageStrategy


def _config(**kwargs) -> MapReportConfig:
    return MapReportConfig(**kwargs)


def test_default_chain_order_with_backup() -> None:
    chain = DegradationChain.default(
        _config(primary=ProviderCredentials("P"), backup=ProviderCredentials("B")),
    )
    assert chain.names == ("primary", "backup", "static_image", "stub")


def test_default_chain_without_credentials_starts_at_static() -> None:
    chain = DegradationChain.default(_config())
    assert chain.names == ("static_image", "stub")


def test_strategy_for_is_deterministic() -> None:
    chain = DegradationChain.default(_config(primary=ProviderCredentials("P")))
    assert chain.strategy_for(0) is chain.strategy_for(0)
    assert chain.strategy_for(1) is not None and chain.strategy_for(1).name == "static_image"
    assert chain.strategy_for(3) is None
    assert chain.strategy_for(-1) is None


def test_next_never_returns_a_failed_strategy() -> None:
    chain = DegradationChain.default(_config(primary=ProviderCredentials("P"), backup=ProviderCredentials("B")))
    seen = [chain.current.name if chain.current else None]
    while (following := chain.next()) is not None:
        seen.append(following.name)

    assert seen == ["primary", "backup", "static_image", "stub"]
    assert chain.exhausted
    assert chain.next() is None
    assert chain.failures == len(chain)


def test_empty_chain_rejected() -> None:
    with pytest.raises(MapReportConfigError):
        DegradationChain([])


@pytest.mark.asyncio
async def test_script_strategy_requests_url_and_wraps_sdk() -> None:
    requested: list[str] = []
    sdk = object()

    async def request(url: str) -> object:
        requested.append(url)
        return {"sdk": sdk}

    strategy = ScriptStrategy(
        "primary",
        ProviderCredentials("P"),
        provider_url="https://maps.example.com/api/js",
        callback_name="ready",
        sdk_factory=lambda payload: payload["sdk"],
    )
    handle = await strategy.attempt(request)

    assert requested == [strategy.url]
    assert handle.kind == ProviderKind.REAL
    assert handle.strategy == "primary"


@pytest.mark.asyncio
async def test_script_strategy_rejects_missing_sdk() -> None:
    async def request(url: str) -> None:
        return None

    strategy = ScriptStrategy("primary", ProviderCredentials("P"), provider_url="https://maps.example.com/api/js")
    with pytest.raises(ProviderLoadError) as excinfo:
        await strategy.attempt(request)
    assert excinfo.value.strategy == "primary"


@pytest.mark.asyncio
async def test_script_strategy_wraps_factory_errors() -> None:
    async def request(url: str) -> str:
        return "garbage"

    def factory(payload: object) -> object:
        raise TypeError("not an sdk")

    strategy = ScriptStrategy(
        "backup",
        ProviderCredentials("B"),
        provider_url="https://maps.example.com/api/js",
        sdk_factory=factory,
    )
    with pytest.raises(ProviderLoadError):
        await strategy.attempt(request)


@pytest.mark.asyncio
async def test_fallback_strategies_issue_no_request() -> None:
    async def request(url: str) -> None:  # pragma: no cover
        raise AssertionError("fallbacks must not issue script requests")

    static = await StaticImageStrategy(
        base_url="https://static/map",
        center=(0.0, 0.0),
        zoom=10,
        size=(100, 100),
    ).attempt(request)
    stub = await NullStrategy().attempt(request)

    assert static.kind == ProviderKind.STATIC_IMAGE
    assert stub.kind == ProviderKind.NULL
