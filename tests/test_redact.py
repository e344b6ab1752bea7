from __future__ import annotations

from mapreport._redact import redact_for_log, redact_url


def test_redact_url_hides_api_key() -> None:
    url = "https://maps.example.com/api/js?key=SECRET&libraries=places&callback=ready"

    redacted = redact_url(url)

    assert "SECRET" not in redacted
    assert "key=<redacted>" in redacted
    assert "libraries=places" in redacted
    assert "callback=ready" in redacted


def test_redact_url_without_query_is_unchanged() -> None:
    assert redact_url("https://example.com/script.js") == "https://example.com/script.js"


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "id": "m1",
        "key": "SECRET",
        "nested": {"token": "T", "description": "pothole"},
        "items": [{"password": "pw"}],
    }

    redacted = redact_for_log(payload)
    assert redacted["id"] == "m1"
    assert redacted["key"] == "<redacted>"
    assert redacted["nested"]["token"] == "<redacted>"
    assert redacted["nested"]["description"] == "pothole"
    assert redacted["items"][0]["password"] == "<redacted>"


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]
