from __future__ import annotations

from datetime import timedelta

import pytest

from mapreport.config import MapReportConfig, ProviderCredentials
from mapreport.exceptions import MapReportConfigError


def test_defaults_are_desktop_tuning() -> None:
    config = MapReportConfig()
    assert config.capacity == 100
    assert config.batch_size == 5
    assert config.batch_delay == pytest.approx(0.3)
    assert config.load_timeout == pytest.approx(15.0)
    assert config.ttl == timedelta(hours=3)
    assert config.storage_key == "savedMarkers"


def test_for_device_low_memory() -> None:
    config = MapReportConfig.for_device(low_memory=True)
    assert config.low_memory is True
    assert config.capacity == 20
    assert config.batch_size == 2
    assert config.batch_delay == pytest.approx(1.0)
    assert config.save_debounce == pytest.approx(10.0)
    assert config.load_timeout == pytest.approx(10.0)


def test_for_device_explicit_override_wins() -> None:
    config = MapReportConfig.for_device(low_memory=True, capacity=50)
    assert config.capacity == 50
    assert config.batch_size == 2


def test_zero_ttl_disables_expiry() -> None:
    assert MapReportConfig(marker_ttl=0).ttl is None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"capacity": 0},
        {"batch_size": 0},
        {"load_timeout": 0},
        {"batch_delay": -1},
        {"marker_ttl": -5},
        {"sweep_interval": 0},
    ],
)
def test_invalid_values_rejected(kwargs: dict) -> None:
    with pytest.raises(MapReportConfigError):
        MapReportConfig(**kwargs)


def test_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MAPREPORT_API_KEY", "primary-key")
    monkeypatch.setenv("MAPREPORT_BACKUP_API_KEY", "backup-key")
    monkeypatch.setenv("MAPREPORT_LIBRARIES", "places, geometry")
    monkeypatch.setenv("MAPREPORT_CAPACITY", "42")
    monkeypatch.setenv("MAPREPORT_MARKER_TTL", "60")
    monkeypatch.setenv("MAPREPORT_LOW_MEMORY", "yes")
    monkeypatch.setenv("MAPREPORT_REMOTE_BASE_URL", "https://edge.example.com")

    config = MapReportConfig.from_env()

    assert config.primary == ProviderCredentials("primary-key", ("places", "geometry"), "weekly")
    assert config.backup is not None and config.backup.api_key == "backup-key"
    assert config.capacity == 42
    assert config.marker_ttl == pytest.approx(60.0)
    assert config.low_memory is True
    assert config.batch_size == 2
    assert config.remote_base_url == "https://edge.example.com"


def test_from_env_overrides_take_precedence(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MAPREPORT_API_KEY", raising=False)
    monkeypatch.delenv("MAPREPORT_BACKUP_API_KEY", raising=False)
    monkeypatch.setenv("MAPREPORT_CAPACITY", "42")
    monkeypatch.setenv("MAPREPORT_LOW_MEMORY", "1")

    config = MapReportConfig.from_env(capacity=7, low_memory=False)

    assert config.primary is None
    assert config.capacity == 7
    assert config.low_memory is False
    assert config.batch_size == 5
