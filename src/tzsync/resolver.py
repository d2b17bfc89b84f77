"""Location resolver: bounded retries around a single geolocation provider."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable

from tzsync._constants import RETRY_BACKOFF_CAP
from tzsync._http import LocationProvider
from tzsync.config import TzSyncConfig
from tzsync.exceptions import PermanentLookupError, ResolutionFailedError, TransientLookupError
from tzsync.models.connectivity import LookupTrigger
from tzsync.models.location import LocationResult

_logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base: float, *, cap: float = RETRY_BACKOFF_CAP, rng: random.Random | None = None) -> float:
    """Delay before retrying after failed attempt number *attempt* (1-based).

    Exponential (``base * 2**(attempt-1)``, capped) with jitter drawn
    from the upper half of the interval.
    """
    ceiling = min(cap, base * (2 ** (attempt - 1)))
    jitter = (rng or random).uniform(0.5, 1.0)
    return ceiling * jitter


class LocationResolver:
    """Resolve a :class:`LookupTrigger` into a validated :class:`LocationResult`.

    Usage::

        resolver = LocationResolver(provider, config)
        result = await resolver.resolve(trigger)
    """

    def __init__(
        self,
        provider: LocationProvider,
        config: TzSyncConfig,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._provider = provider
        self._max_attempts = config.max_retries
        self._request_timeout = config.request_timeout
        self._resolve_timeout = config.resolve_timeout
        self._retry_backoff = config.retry_backoff
        self._sleep = sleep
        self._rng = rng
        self._attempts = 0

    async def resolve(self, trigger: LookupTrigger) -> LocationResult:
        """Look up the current location for *trigger*.

        Returns
        -------
        LocationResult
            A successful, validated result carrying a timezone.

        Raises
        ------
        ResolutionFailedError
            On a permanent failure, after ``max_retries`` transient
            failures, or when ``resolve_timeout`` elapses. Nothing is
            returned in those cases, so no default timezone can leak out.
        """
        self._attempts = 0
        try:
            async with asyncio.timeout(self._resolve_timeout):
                return await self._resolve_with_retries(trigger)
        except TimeoutError as exc:
            raise ResolutionFailedError(
                f"Location lookup exceeded {self._resolve_timeout:.1f}s",
                attempts=self._attempts,
            ) from exc

    async def _resolve_with_retries(self, trigger: LookupTrigger) -> LocationResult:
        last_exc: TransientLookupError | None = None

        for attempt in range(1, self._max_attempts + 1):
            self._attempts = attempt
            try:
                result = await self._attempt(trigger)
            except PermanentLookupError as exc:
                _logger.warning("Location lookup failed permanently: %s", exc)
                raise ResolutionFailedError(str(exc), attempts=attempt, permanent=True) from exc
            except TransientLookupError as exc:
                last_exc = exc
                if attempt < self._max_attempts:
                    delay = backoff_delay(attempt, self._retry_backoff, rng=self._rng)
                    _logger.info(
                        "Location lookup failed (attempt %d/%d), retrying in %.1fs: %s",
                        attempt,
                        self._max_attempts,
                        delay,
                        exc,
                    )
                    await self._sleep(delay)
                continue

            if not result.success or result.timezone is None:
                reason = result.message or ("provider reported failure" if not result.success else "no timezone in response")
                _logger.warning("Location provider refused lookup: %s", reason)
                raise ResolutionFailedError(
                    f"Provider reported failure: {reason}",
                    attempts=attempt,
                    permanent=True,
                )
            _logger.debug(
                "Resolved location lat=%s lon=%s timezone=%s",
                result.latitude,
                result.longitude,
                result.timezone,
            )
            return result

        raise ResolutionFailedError(
            f"Location lookup failed after {self._max_attempts} attempts: {last_exc}",
            attempts=self._max_attempts,
        ) from last_exc

    async def _attempt(self, trigger: LookupTrigger) -> LocationResult:
        try:
            async with asyncio.timeout(self._request_timeout):
                return await self._provider.locate(trigger)
        except TimeoutError as exc:
            raise TransientLookupError(f"Location lookup timed out after {self._request_timeout:.1f}s") from exc
