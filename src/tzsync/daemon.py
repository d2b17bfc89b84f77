"""Orchestrator: observer -> gate -> resolver -> applier."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import deque
from collections.abc import AsyncIterable, Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

import aiohttp

from tzsync._bus.iwd import IwdSubscription
from tzsync._bus.timedated import TimedatedTimezoneStore
from tzsync._constants import REPORT_HISTORY_SIZE, RESUBSCRIBE_BACKOFF_INITIAL, RESUBSCRIBE_BACKOFF_MAX
from tzsync._http import HttpLocationProvider, LocationProvider
from tzsync.applier import TimezoneApplier, TimezoneStore
from tzsync.config import TzSyncConfig
from tzsync.exceptions import ApplyError, ResolutionFailedError, SubscriptionLostError, TzSyncError
from tzsync.gate import LookupGate
from tzsync.models.connectivity import BusNotification, LookupTrigger
from tzsync.models.timezone import ApplyOutcome, CycleOutcome, CycleReport
from tzsync.observer import ConnectivityObserver
from tzsync.resolver import LocationResolver

_logger = logging.getLogger(__name__)

Subscribe = Callable[[], AbstractAsyncContextManager[AsyncIterable[BusNotification]]]


def _default_subscribe(config: TzSyncConfig) -> Subscribe:
    return lambda: IwdSubscription(sync_on_start=config.sync_on_start)


class TzSyncDaemon:
    """Keeps the system timezone in sync with wireless associations.

    Usage::

        async with TzSyncDaemon(config) as daemon:
            await daemon.run()

    Collaborators default to iwd, the configured HTTP endpoint and
    systemd-timedated; pass ``subscribe``, ``provider`` or ``store`` to
    replace them.
    """

    def __init__(
        self,
        config: TzSyncConfig,
        *,
        subscribe: Subscribe | None = None,
        provider: LocationProvider | None = None,
        store: TimezoneStore | None = None,
        resolver: LocationResolver | None = None,
        http_session: aiohttp.ClientSession | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._subscribe = subscribe or _default_subscribe(config)
        self._provider = provider
        self._resolver = resolver
        self._external_session = http_session is not None
        self._http_session = http_session
        self._owned_store = TimedatedTimezoneStore() if store is None else None
        self._applier = TimezoneApplier(store or self._owned_store, timeout=config.apply_timeout)
        self._observer = ConnectivityObserver(clock=clock)
        self._gate = LookupGate(
            debounce_window=config.debounce_window,
            min_lookup_interval=config.min_lookup_interval,
            is_connected=self._observer.is_connected,
            clock=clock,
        )
        self._stop = asyncio.Event()
        self._cycle_active = False
        self._apply_task: asyncio.Task[ApplyOutcome] | None = None
        self._reports: deque[CycleReport] = deque(maxlen=REPORT_HISTORY_SIZE)

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> TzSyncDaemon:
        if self._resolver is None:
            if self._provider is None:
                if self._http_session is None:
                    self._http_session = aiohttp.ClientSession()
                self._provider = HttpLocationProvider(self._config.resolver_endpoint, self._http_session)
            self._resolver = LocationResolver(self._provider, self._config)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._owned_store is not None:
            self._owned_store.close()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def observer(self) -> ConnectivityObserver:
        return self._observer

    @property
    def gate(self) -> LookupGate:
        return self._gate

    @property
    def reports(self) -> list[CycleReport]:
        """Most recent cycle reports, oldest first."""
        return list(self._reports)

    @property
    def cycle_active(self) -> bool:
        return self._cycle_active

    def request_stop(self) -> None:
        """Ask :meth:`run` to shut down gracefully."""
        _logger.debug("Shutdown requested")
        self._stop.set()

    async def run(self) -> None:
        """Run until :meth:`request_stop` is called or the task is cancelled.

        On the way out the subscription is closed and an in-flight lookup
        is cancelled, but an apply that already started is awaited.
        """
        self._require_resolver()
        watch = asyncio.ensure_future(self._watch_connectivity())
        cycles = asyncio.ensure_future(self._run_triggers())
        stop = asyncio.ensure_future(self._stop.wait())
        try:
            done, _ = await asyncio.wait({watch, cycles, stop}, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task is stop or task.cancelled():
                    continue
                exc = task.exception()
                if exc is not None:
                    raise exc
        finally:
            for task in (watch, cycles, stop):
                task.cancel()
            await asyncio.gather(watch, cycles, stop, return_exceptions=True)
            await self._finish_apply()

    async def run_once(self) -> CycleReport:
        """Resolve and apply once, without watching the bus."""
        trigger = LookupTrigger(timestamp=time.monotonic())
        return await self.run_cycle(trigger)

    async def run_cycle(self, trigger: LookupTrigger) -> CycleReport:
        """Run one resolve-and-apply cycle for *trigger*.

        Refuses to start while another cycle is active. Failures are
        reported, not raised.
        """
        if self._cycle_active:
            _logger.warning("Lookup cycle already in progress; ignoring trigger at %.3f", trigger.timestamp)
            return self._report(CycleReport(trigger=trigger, outcome=CycleOutcome.SKIPPED))

        resolver = self._require_resolver()
        self._cycle_active = True
        try:
            _logger.debug(
                "Starting lookup cycle (interface=%s, suppressed=%d)",
                trigger.interface,
                trigger.suppressed_count,
            )
            try:
                result = await resolver.resolve(trigger)
            except ResolutionFailedError as exc:
                _logger.warning("Location lookup failed after %d attempt(s): %s", exc.attempts, exc)
                return self._report(CycleReport(trigger=trigger, outcome=CycleOutcome.RESOLUTION_FAILED, error=exc))

            timezone = result.timezone
            if timezone is None:
                exc = ResolutionFailedError("Resolved location carries no timezone", attempts=1, permanent=True)
                _logger.warning("%s", exc)
                return self._report(CycleReport(trigger=trigger, outcome=CycleOutcome.RESOLUTION_FAILED, error=exc))
            if self._stop.is_set():
                _logger.info("Shutdown requested; not applying timezone %s", timezone)
                return self._report(CycleReport(trigger=trigger, outcome=CycleOutcome.ABANDONED, timezone=timezone))

            apply_task = asyncio.ensure_future(self._applier.apply(timezone))
            self._apply_task = apply_task
            try:
                outcome = await asyncio.shield(apply_task)
            except ApplyError as exc:
                _logger.warning("Could not apply timezone %s: %s", timezone, exc)
                return self._report(
                    CycleReport(trigger=trigger, outcome=CycleOutcome.APPLY_FAILED, timezone=timezone, error=exc)
                )

            cycle_outcome = CycleOutcome.CHANGED if outcome == ApplyOutcome.CHANGED else CycleOutcome.NO_CHANGE
            return self._report(CycleReport(trigger=trigger, outcome=cycle_outcome, timezone=timezone))
        finally:
            self._cycle_active = False

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_resolver(self) -> LocationResolver:
        if self._resolver is None:
            raise TzSyncError("Daemon not initialized. Use 'async with TzSyncDaemon(...) as daemon:'")
        return self._resolver

    def _report(self, report: CycleReport) -> CycleReport:
        self._reports.append(report)
        return report

    async def _finish_apply(self) -> None:
        task = self._apply_task
        self._apply_task = None
        if task is None or task.done():
            return
        _logger.info("Waiting for the in-progress timezone change to finish")
        with contextlib.suppress(ApplyError):
            await task

    async def _watch_connectivity(self) -> None:
        delay = RESUBSCRIBE_BACKOFF_INITIAL
        while True:
            try:
                async with self._subscribe() as notifications:
                    delay = RESUBSCRIBE_BACKOFF_INITIAL
                    async for event in self._observer.observe(notifications):
                        _logger.info("Interface %s connected", event.interface)
                        self._gate.admit(event)
                _logger.warning("Bus subscription ended; resubscribing in %.1fs", delay)
            except SubscriptionLostError as exc:
                _logger.warning("Bus subscription lost (%s); resubscribing in %.1fs", exc, delay)
            self._observer.reset()
            self._gate.reset()
            await asyncio.sleep(delay)
            delay = min(delay * 2, RESUBSCRIBE_BACKOFF_MAX)

    async def _run_triggers(self) -> None:
        async for trigger in self._gate.triggers():
            await self.run_cycle(trigger)
