"""Debounce and rate-limit gate between the observer and the resolver.

Wireless association churn is bursty. The gate collapses a burst of
connectivity events into one :class:`LookupTrigger` once the burst has
been quiet for ``debounce_window`` seconds, and never lets two triggers
out closer than ``min_lookup_interval`` seconds apart. A settled burst
that arrives too early is deferred to the earliest allowed time and
fires then only if an interface is still connected.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass

from tzsync.models.connectivity import ConnectivityEvent, LookupTrigger

_logger = logging.getLogger(__name__)


@dataclass
class _PendingBurst:
    settles_at: float
    interface: str
    suppressed: int = 0
    deferred: bool = False


class LookupGate:
    """Turns connectivity events into rate-limited lookup triggers.

    The gate is a plain state machine driven by :meth:`admit` and
    :meth:`poll`; :meth:`triggers` runs it against the event loop clock.
    """

    def __init__(
        self,
        *,
        debounce_window: float,
        min_lookup_interval: float,
        is_connected: Callable[[], bool] = lambda: True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._debounce_window = debounce_window
        self._min_lookup_interval = min_lookup_interval
        self._is_connected = is_connected
        self._clock = clock
        self._pending: _PendingBurst | None = None
        self._last_lookup: float | None = None
        self._wakeup = asyncio.Event()

    @property
    def pending(self) -> bool:
        return self._pending is not None

    @property
    def last_lookup(self) -> float | None:
        return self._last_lookup

    def reset(self) -> None:
        """Drop any pending burst. The last-lookup time is kept."""
        self._pending = None
        self._wakeup.set()

    def admit(self, event: ConnectivityEvent, now: float | None = None) -> None:
        """Record a connectivity event, starting or extending the current burst."""
        if now is None:
            now = self._clock()
        settles_at = now + self._debounce_window
        pending = self._pending
        if pending is None:
            self._pending = _PendingBurst(settles_at=settles_at, interface=event.interface)
        else:
            pending.settles_at = settles_at
            pending.interface = event.interface
            pending.suppressed += 1
        self._wakeup.set()

    def _earliest_allowed(self) -> float | None:
        if self._last_lookup is None:
            return None
        return self._last_lookup + self._min_lookup_interval

    def deadline(self) -> float | None:
        """Earliest time at which :meth:`poll` may emit, or ``None`` if idle."""
        pending = self._pending
        if pending is None:
            return None
        earliest = self._earliest_allowed()
        if earliest is None:
            return pending.settles_at
        return max(pending.settles_at, earliest)

    def poll(self, now: float | None = None) -> LookupTrigger | None:
        """Emit a trigger if the pending burst is due, else ``None``."""
        if now is None:
            now = self._clock()
        pending = self._pending
        if pending is None or now < pending.settles_at:
            return None

        earliest = self._earliest_allowed()
        fire_at = pending.settles_at
        if earliest is not None and earliest > pending.settles_at:
            if now < earliest:
                if not pending.deferred:
                    pending.deferred = True
                    _logger.debug(
                        "Lookup deferred by %.1fs to respect the minimum lookup interval",
                        earliest - now,
                    )
                return None
            fire_at = earliest

        self._pending = None
        if not self._is_connected():
            _logger.debug("Discarding lookup trigger for %s: no interface connected", pending.interface)
            return None

        self._last_lookup = fire_at
        return LookupTrigger(
            timestamp=fire_at,
            suppressed_count=pending.suppressed,
            interface=pending.interface,
        )

    async def triggers(self) -> AsyncIterator[LookupTrigger]:
        """Yield triggers as they become due. Runs until cancelled."""
        while True:
            now = self._clock()
            trigger = self.poll(now)
            if trigger is not None:
                yield trigger
                continue

            deadline = self.deadline()
            self._wakeup.clear()
            if deadline is None:
                await self._wakeup.wait()
                continue
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=max(0.0, deadline - now))
            except TimeoutError:
                pass
