"""Daemon configuration for tzsync."""

from __future__ import annotations

import dataclasses
import math
import os
import re
from typing import Any
from urllib.parse import urlparse

from tzsync._constants import DEFAULT_RESOLVER_ENDPOINT
from tzsync.exceptions import TzSyncConfigError

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS: dict[str, float] = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def parse_duration(value: str | float | int, *, name: str = "duration") -> float:
    """Parse a duration into seconds.

    Accepts plain numbers (seconds) and strings with an optional
    ``ms``/``s``/``m``/``h`` suffix, e.g. ``"5"``, ``"2.5s"``, ``"10m"``.

    Raises :class:`TzSyncConfigError` for anything else.
    """
    if isinstance(value, bool):
        raise TzSyncConfigError(f"{name} must be a duration, got {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    match = _DURATION_RE.match(value)
    if match is None:
        raise TzSyncConfigError(f"{name} must be a duration like '5s' or '10m', got {value!r}")
    number, unit = match.groups()
    return float(number) * _DURATION_UNITS[unit or "s"]


@dataclasses.dataclass(frozen=True)
class TzSyncConfig:
    """Daemon configuration.

    Parameters
    ----------
    debounce_window : float
        Seconds without a new connectivity event before a burst settles
        into a single lookup.
    min_lookup_interval : float
        Minimum seconds between two geolocation lookups. Triggers that
        arrive sooner are deferred to the earliest allowed time.
    resolver_endpoint : str
        Geolocation URL queried once per lookup.
    max_retries : int
        Total lookup attempts per cycle, including the first one.
    request_timeout : float
        Per-attempt timeout in seconds.
    resolve_timeout : float
        Ceiling in seconds across all attempts and backoff sleeps of one
        cycle.
    apply_timeout : float
        Seconds to wait for the operating system to read or change the
        timezone.
    retry_backoff : float
        Base delay in seconds for exponential backoff between attempts.
    sync_on_start : bool
        Treat interfaces already connected at subscription time as fresh
        associations.
    """

    debounce_window: float = 5.0
    min_lookup_interval: float = 300.0
    resolver_endpoint: str = DEFAULT_RESOLVER_ENDPOINT
    max_retries: int = 3
    request_timeout: float = 10.0
    resolve_timeout: float = 60.0
    apply_timeout: float = 10.0
    retry_backoff: float = 1.0
    sync_on_start: bool = True

    def __post_init__(self) -> None:
        for name in (
            "debounce_window",
            "min_lookup_interval",
            "retry_backoff",
        ):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value) or value < 0:
                raise TzSyncConfigError(f"{name} must be a non-negative number of seconds, got {value!r}")

        for name in ("request_timeout", "resolve_timeout", "apply_timeout"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value) or value <= 0:
                raise TzSyncConfigError(f"{name} must be a positive number of seconds, got {value!r}")

        if not isinstance(self.max_retries, int) or isinstance(self.max_retries, bool) or self.max_retries < 1:
            raise TzSyncConfigError(f"max_retries must be an integer >= 1, got {self.max_retries!r}")

        parsed = urlparse(self.resolver_endpoint) if isinstance(self.resolver_endpoint, str) else None
        if parsed is None or parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise TzSyncConfigError(f"resolver_endpoint must be an http(s) URL, got {self.resolver_endpoint!r}")

    @classmethod
    def from_env(cls, **overrides: Any) -> TzSyncConfig:
        """Create configuration from environment variables.

        Reads optional ``TZSYNC_*`` variables. Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        TzSyncConfig
            Populated configuration.

        Raises
        ------
        TzSyncConfigError
            If any value is malformed.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        _ENV_DURATION_MAP = {
            "TZSYNC_DEBOUNCE_WINDOW": "debounce_window",
            "TZSYNC_MIN_LOOKUP_INTERVAL": "min_lookup_interval",
            "TZSYNC_REQUEST_TIMEOUT": "request_timeout",
            "TZSYNC_RESOLVE_TIMEOUT": "resolve_timeout",
            "TZSYNC_APPLY_TIMEOUT": "apply_timeout",
            "TZSYNC_RETRY_BACKOFF": "retry_backoff",
        }
        for env_key, field_name in _ENV_DURATION_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = parse_duration(val, name=env_key)

        endpoint = env.get("TZSYNC_RESOLVER_ENDPOINT")
        if endpoint is not None:
            config_kwargs["resolver_endpoint"] = endpoint.strip()

        retries_env = env.get("TZSYNC_MAX_RETRIES")
        if retries_env is not None and "max_retries" not in overrides:
            try:
                config_kwargs["max_retries"] = int(retries_env)
            except ValueError as exc:
                raise TzSyncConfigError(f"TZSYNC_MAX_RETRIES must be an integer, got {retries_env!r}") from exc

        if "sync_on_start" not in overrides:
            config_kwargs["sync_on_start"] = _env_bool(env.get("TZSYNC_SYNC_ON_START"), True)

        for field_name, value in overrides.items():
            if field_name in _ENV_DURATION_MAP.values() and isinstance(value, str):
                overrides[field_name] = parse_duration(value, name=field_name)
        config_kwargs.update(overrides)

        try:
            return cls(**config_kwargs)
        except TypeError as exc:
            raise TzSyncConfigError(str(exc)) from exc
