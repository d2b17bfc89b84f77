"""Helpers for safe debug logging.

Geolocation responses carry the host's public address and network
operator next to the fields tzsync actually uses. This module redacts
those before a payload reaches a DEBUG log and coarsens coordinates to
roughly city level.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

_SENSITIVE_VALUE_KEYS: frozenset[str] = frozenset(
    {
        "ip",
        "query",
        "network",
        "org",
        "isp",
        "as",
        "asn",
        "asname",
        "hostname",
        "reverse",
        "postal",
        "zip",
    }
)

_COORDINATE_KEYS: frozenset[str] = frozenset({"lat", "lon", "lng", "latitude", "longitude"})

# Provider error messages echo the caller's address ("Invalid IP 203.0.113.9").
_IPV4_RE = re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")
_IPV6_RE = re.compile(r"\b(?:[0-9A-Fa-f]{1,4}:){3,7}[0-9A-Fa-f]{0,4}\b")


def _scrub_text(value: str, max_string: int) -> str:
    value = _IPV6_RE.sub("<ip>", _IPV4_RE.sub("<ip>", value))
    if len(value) > max_string:
        return f"{value[:max_string]}…<truncated>"
    return value


def _coarse(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return value
    return round(float(value), 1)


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a redacted copy of a provider payload suitable for debug logs."""
    if _depth > 10:
        return "<max-depth>"

    if isinstance(value, str):
        return _scrub_text(value, max_string)

    if value is None or isinstance(value, (int, float, bool)):
        return value

    if isinstance(value, Mapping):
        redacted: dict[str, Any] = {}
        for k, v in value.items():
            key = str(k)
            lowered = key.lower()
            if lowered in _SENSITIVE_VALUE_KEYS:
                redacted[key] = "<redacted>"
            elif lowered in _COORDINATE_KEYS:
                redacted[key] = _coarse(v)
            else:
                redacted[key] = redact_for_log(v, max_string=max_string, _depth=_depth + 1)
        return redacted

    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]

    return repr(value)
