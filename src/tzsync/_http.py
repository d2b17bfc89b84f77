"""HTTP geolocation provider."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import aiohttp
from pydantic import ValidationError

from tzsync._constants import TRANSIENT_HTTP_STATUSES, USER_AGENT
from tzsync._redact import redact_for_log
from tzsync.exceptions import PermanentLookupError, TransientLookupError
from tzsync.models.connectivity import LookupTrigger
from tzsync.models.location import LocationResult

_logger = logging.getLogger(__name__)


class LocationProvider(Protocol):
    """Structural interface for a geolocation source.

    Implementations raise :class:`TransientLookupError` for failures worth
    retrying and :class:`PermanentLookupError` for everything else.
    """

    async def locate(self, trigger: LookupTrigger) -> LocationResult:
        ...


def _is_transient_status(status: int) -> bool:
    return status >= 500 or status in TRANSIENT_HTTP_STATUSES


class HttpLocationProvider:
    """Queries an IP-geolocation JSON endpoint with one GET per lookup."""

    def __init__(self, endpoint: str, http_session: aiohttp.ClientSession) -> None:
        self._endpoint = endpoint
        self._http = http_session

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def locate(self, trigger: LookupTrigger) -> LocationResult:
        """Fetch and validate the current location.

        1. GET the configured endpoint
        2. Classify the HTTP status (429/5xx transient, other errors permanent)
        3. Parse the JSON object into a :class:`LocationResult`
        """
        endpoint = self._endpoint
        headers = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }

        _logger.debug("GET %s (trigger at %.3f)", endpoint, trigger.timestamp)

        try:
            async with self._http.get(endpoint, headers=headers) as resp:
                raw = await resp.read()
                status = resp.status
        except aiohttp.ClientError as exc:
            raise TransientLookupError(
                f"Request to {endpoint} failed: {exc}",
                endpoint=endpoint,
            ) from exc

        if status != 200:
            error_cls = TransientLookupError if _is_transient_status(status) else PermanentLookupError
            raise error_cls(
                f"HTTP {status} from {endpoint}: {raw[:200].decode('utf-8', errors='replace')}",
                status_code=status,
                endpoint=endpoint,
            )

        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise PermanentLookupError(
                f"Undecodable response from {endpoint}: {exc}",
                status_code=status,
                endpoint=endpoint,
            ) from exc

        try:
            body: Any = json.loads(text)
        except json.JSONDecodeError as exc:
            raise PermanentLookupError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                status_code=status,
                endpoint=endpoint,
            ) from exc

        if not isinstance(body, dict):
            raise PermanentLookupError(
                f"Expected a JSON object from {endpoint}, got {type(body).__name__}",
                status_code=status,
                endpoint=endpoint,
            )

        _logger.debug("Location response: %s", redact_for_log(body))

        try:
            return LocationResult.model_validate(body)
        except ValidationError as exc:
            raise PermanentLookupError(
                f"Unusable location from {endpoint}: {exc.errors(include_url=False)}",
                status_code=status,
                endpoint=endpoint,
            ) from exc
