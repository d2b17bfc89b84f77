from __future__ import annotations

from tzsync._redact import redact_for_log


def test_redact_for_log_redacts_network_identity() -> None:
    payload = {
        "ip": "203.0.113.9",
        "query": "203.0.113.9",
        "org": "Example Telecom",
        "as": "AS64500 Example",
        "timezone": "Europe/Paris",
        "nested": {"postal": "75001", "city": "Paris"},
    }

    redacted = redact_for_log(payload)
    assert redacted["ip"] == "<redacted>"
    assert redacted["query"] == "<redacted>"
    assert redacted["org"] == "<redacted>"
    assert redacted["as"] == "<redacted>"
    assert redacted["timezone"] == "Europe/Paris"
    assert redacted["nested"]["postal"] == "<redacted>"
    assert redacted["nested"]["city"] == "Paris"


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]


def test_redact_for_log_masks_addresses_in_messages_and_coarsens_coordinates() -> None:
    payload = {
        "status": "fail",
        "message": "reserved range 192.168.1.20 at 12:30:45",
        "lat": 48.85661,
        "longitude": 2.35222,
    }

    redacted = redact_for_log(payload)
    assert redacted["message"] == "reserved range <ip> at 12:30:45"
    assert redacted["lat"] == 48.9
    assert redacted["longitude"] == 2.4
    assert redacted["status"] == "fail"


def test_redact_for_log_keeps_fields_used_for_resolution() -> None:
    payload = {"timezone": "Asia/Tokyo", "status": "success", "country": "Japan", "utc_offset": "+0900"}

    assert redact_for_log(payload) == payload
