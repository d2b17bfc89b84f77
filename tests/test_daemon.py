from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from tzsync._constants import REPORT_HISTORY_SIZE
from tzsync.config import TzSyncConfig
from tzsync.daemon import TzSyncDaemon
from tzsync.exceptions import ApplyError, SubscriptionLostError, TransientLookupError
from tzsync.models.connectivity import BusNotification, InterfacePhase, LookupTrigger
from tzsync.models.location import LocationResult
from tzsync.models.timezone import CycleOutcome

WLAN = "/net/connman/iwd/0/4"
PARIS = {"lat": 48.85, "lon": 2.35, "timezone": "Europe/Paris", "status": "success"}


def _n(phase: InterfacePhase) -> BusNotification:
    return BusNotification(interface=WLAN, phase=phase)


ASSOCIATION = [_n(InterfacePhase.DISCONNECTED), _n(InterfacePhase.CONNECTING), _n(InterfacePhase.CONNECTED)]


class FakeSubscription:
    """Delivers scripted notifications, then idles or drops the bus."""

    def __init__(
        self, notifications: list[BusNotification], *, lose: bool = False, fail_on_enter: bool = False
    ) -> None:
        self._notifications = notifications
        self._lose = lose
        self._fail_on_enter = fail_on_enter
        self.closed = False

    async def __aenter__(self) -> FakeSubscription:
        if self._fail_on_enter:
            raise SubscriptionLostError("AddMatch interrupted")
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.closed = True

    def __aiter__(self) -> AsyncIterator[BusNotification]:
        return self._stream()

    async def _stream(self) -> AsyncIterator[BusNotification]:
        for notification in self._notifications:
            yield notification
        if self._lose:
            raise SubscriptionLostError("bus connection dropped")
        await asyncio.Event().wait()


class FakeSubscriber:
    def __init__(self, *subscriptions: FakeSubscription) -> None:
        self._subscriptions = list(subscriptions)
        self.opened: list[FakeSubscription] = []

    def __call__(self) -> FakeSubscription:
        subscription = self._subscriptions.pop(0) if len(self._subscriptions) > 1 else self._subscriptions[0]
        self.opened.append(subscription)
        return subscription


class FakeProvider:
    def __init__(self, outcome: Any = None, *, gate: asyncio.Event | None = None) -> None:
        self.outcome = PARIS if outcome is None else outcome
        self.calls = 0
        self.gate = gate
        self.on_locate: Callable[[], None] | None = None
        self.cancelled = False

    async def locate(self, _trigger: LookupTrigger) -> LocationResult:
        self.calls += 1
        if self.on_locate is not None:
            self.on_locate()
        if self.gate is not None:
            try:
                await self.gate.wait()
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return LocationResult.model_validate(self.outcome)


class FakeTimezoneStore:
    def __init__(self, timezone: str = "UTC", *, release: asyncio.Event | None = None) -> None:
        self.timezone = timezone
        self.writes: list[str] = []
        self.release = release
        self.set_started = False

    async def current(self) -> str:
        return self.timezone

    async def set(self, timezone: str) -> None:
        self.set_started = True
        if self.release is not None:
            await self.release.wait()
        self.writes.append(timezone)
        self.timezone = timezone


def _config(**overrides: Any) -> TzSyncConfig:
    values: dict[str, Any] = {
        "debounce_window": 0.02,
        "min_lookup_interval": 60.0,
        "retry_backoff": 0.0,
        "max_retries": 3,
    }
    values.update(overrides)
    return TzSyncConfig(**values)


async def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


async def _start(daemon: TzSyncDaemon) -> asyncio.Task[None]:
    task = asyncio.create_task(daemon.run())
    await asyncio.sleep(0)
    return task


async def _stop(daemon: TzSyncDaemon, task: asyncio.Task[None]) -> None:
    daemon.request_stop()
    async with asyncio.timeout(2.0):
        await task


@pytest.mark.asyncio
async def test_association_changes_timezone_from_utc_to_paris() -> None:
    provider = FakeProvider()
    store = FakeTimezoneStore("UTC")
    subscriber = FakeSubscriber(FakeSubscription(ASSOCIATION))

    async with TzSyncDaemon(_config(), subscribe=subscriber, provider=provider, store=store) as daemon:
        task = await _start(daemon)
        await _wait_for(lambda: len(daemon.reports) == 1)
        await _stop(daemon, task)

    assert provider.calls == 1
    assert store.writes == ["Europe/Paris"]
    report = daemon.reports[0]
    assert report.outcome == CycleOutcome.CHANGED
    assert report.timezone == "Europe/Paris"
    assert report.trigger.interface == WLAN
    assert subscriber.opened[0].closed


@pytest.mark.asyncio
async def test_association_with_matching_timezone_is_no_change() -> None:
    provider = FakeProvider()
    store = FakeTimezoneStore("Europe/Paris")

    async with TzSyncDaemon(
        _config(), subscribe=FakeSubscriber(FakeSubscription(ASSOCIATION)), provider=provider, store=store
    ) as daemon:
        task = await _start(daemon)
        await _wait_for(lambda: len(daemon.reports) == 1)
        await _stop(daemon, task)

    assert provider.calls == 1
    assert store.writes == []
    assert daemon.reports[0].outcome == CycleOutcome.NO_CHANGE


@pytest.mark.asyncio
async def test_transient_errors_on_every_attempt_leave_timezone_unchanged() -> None:
    provider = FakeProvider(TransientLookupError("HTTP 503", status_code=503))
    store = FakeTimezoneStore("UTC")

    async with TzSyncDaemon(
        _config(max_retries=3), subscribe=FakeSubscriber(FakeSubscription(ASSOCIATION)), provider=provider, store=store
    ) as daemon:
        task = await _start(daemon)
        await _wait_for(lambda: len(daemon.reports) == 1)

        assert not task.done()
        assert daemon.reports[0].outcome == CycleOutcome.RESOLUTION_FAILED
        assert provider.calls == 3
        assert store.writes == []

        # Still ready for the next trigger.
        provider.outcome = PARIS
        report = await daemon.run_cycle(LookupTrigger(timestamp=1.0))
        assert report.outcome == CycleOutcome.CHANGED
        await _stop(daemon, task)

    assert store.writes == ["Europe/Paris"]


@pytest.mark.asyncio
async def test_flapping_association_collapses_into_one_lookup() -> None:
    provider = FakeProvider()
    store = FakeTimezoneStore("UTC")
    flapping = [
        _n(InterfacePhase.CONNECTED),
        _n(InterfacePhase.DISCONNECTED),
        _n(InterfacePhase.CONNECTED),
        _n(InterfacePhase.CONNECTED),
        _n(InterfacePhase.DISCONNECTED),
        _n(InterfacePhase.CONNECTED),
    ]

    async with TzSyncDaemon(
        _config(), subscribe=FakeSubscriber(FakeSubscription(flapping)), provider=provider, store=store
    ) as daemon:
        task = await _start(daemon)
        await _wait_for(lambda: len(daemon.reports) == 1)
        await asyncio.sleep(0.1)
        await _stop(daemon, task)

    assert provider.calls == 1
    assert len(daemon.reports) == 1
    assert daemon.reports[0].trigger.suppressed_count == 2


@pytest.mark.asyncio
async def test_lost_subscription_is_resubscribed(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("tzsync.daemon.RESUBSCRIBE_BACKOFF_INITIAL", 0.01)
    provider = FakeProvider()
    store = FakeTimezoneStore("UTC")
    subscriber = FakeSubscriber(
        FakeSubscription([_n(InterfacePhase.CONNECTING)], lose=True),
        FakeSubscription(ASSOCIATION),
    )

    async with TzSyncDaemon(_config(), subscribe=subscriber, provider=provider, store=store) as daemon:
        task = await _start(daemon)
        await _wait_for(lambda: len(daemon.reports) == 1)
        await _stop(daemon, task)

    assert len(subscriber.opened) == 2
    assert subscriber.opened[0].closed
    assert store.writes == ["Europe/Paris"]


@pytest.mark.asyncio
async def test_shutdown_cancels_in_flight_lookup_without_applying() -> None:
    provider = FakeProvider(gate=asyncio.Event())
    store = FakeTimezoneStore("UTC")

    async with TzSyncDaemon(
        _config(), subscribe=FakeSubscriber(FakeSubscription(ASSOCIATION)), provider=provider, store=store
    ) as daemon:
        task = await _start(daemon)
        await _wait_for(lambda: provider.calls == 1)
        await _stop(daemon, task)

    assert provider.cancelled
    assert store.writes == []
    assert daemon.reports == []


@pytest.mark.asyncio
async def test_shutdown_waits_for_started_apply() -> None:
    release = asyncio.Event()
    store = FakeTimezoneStore("UTC", release=release)

    async with TzSyncDaemon(
        _config(), subscribe=FakeSubscriber(FakeSubscription(ASSOCIATION)), provider=FakeProvider(), store=store
    ) as daemon:
        task = await _start(daemon)
        await _wait_for(lambda: store.set_started)

        daemon.request_stop()
        await asyncio.sleep(0.05)
        assert not task.done()

        release.set()
        async with asyncio.timeout(2.0):
            await task

    assert store.timezone == "Europe/Paris"


@pytest.mark.asyncio
async def test_resolution_finishing_after_stop_is_abandoned() -> None:
    provider = FakeProvider()
    store = FakeTimezoneStore("UTC")

    async with TzSyncDaemon(
        _config(), subscribe=FakeSubscriber(FakeSubscription([])), provider=provider, store=store
    ) as daemon:
        provider.on_locate = daemon.request_stop
        report = await daemon.run_cycle(LookupTrigger(timestamp=1.0))

    assert report.outcome == CycleOutcome.ABANDONED
    assert store.writes == []


@pytest.mark.asyncio
async def test_second_cycle_is_refused_while_one_is_active() -> None:
    gate = asyncio.Event()
    provider = FakeProvider(gate=gate)
    store = FakeTimezoneStore("UTC")

    async with TzSyncDaemon(
        _config(), subscribe=FakeSubscriber(FakeSubscription([])), provider=provider, store=store
    ) as daemon:
        first = asyncio.create_task(daemon.run_cycle(LookupTrigger(timestamp=1.0)))
        await _wait_for(lambda: daemon.cycle_active)

        skipped = await daemon.run_cycle(LookupTrigger(timestamp=2.0))
        gate.set()
        completed = await first

    assert skipped.outcome == CycleOutcome.SKIPPED
    assert completed.outcome == CycleOutcome.CHANGED
    assert provider.calls == 1
    assert store.writes == ["Europe/Paris"]


@pytest.mark.asyncio
async def test_apply_failure_is_reported_not_raised() -> None:
    class _DenyingStore(FakeTimezoneStore):
        async def set(self, timezone: str) -> None:
            raise ApplyError("Access denied", timezone=timezone)

    store = _DenyingStore("UTC")

    async with TzSyncDaemon(
        _config(), subscribe=FakeSubscriber(FakeSubscription([])), provider=FakeProvider(), store=store
    ) as daemon:
        report = await daemon.run_once()

    assert report.outcome == CycleOutcome.APPLY_FAILED
    assert isinstance(report.error, ApplyError)
    assert store.timezone == "UTC"


@pytest.mark.asyncio
async def test_subscription_failing_to_open_is_retried(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("tzsync.daemon.RESUBSCRIBE_BACKOFF_INITIAL", 0.01)
    store = FakeTimezoneStore("UTC")
    subscriber = FakeSubscriber(
        FakeSubscription([], fail_on_enter=True),
        FakeSubscription([], fail_on_enter=True),
        FakeSubscription(ASSOCIATION),
    )

    async with TzSyncDaemon(_config(), subscribe=subscriber, provider=FakeProvider(), store=store) as daemon:
        task = await _start(daemon)
        await _wait_for(lambda: len(daemon.reports) == 1)
        assert not task.done()
        await _stop(daemon, task)

    assert len(subscriber.opened) == 3
    assert store.writes == ["Europe/Paris"]


@pytest.mark.asyncio
async def test_report_history_is_bounded() -> None:
    provider = FakeProvider()
    store = FakeTimezoneStore("Europe/Paris")

    async with TzSyncDaemon(
        _config(), subscribe=FakeSubscriber(FakeSubscription([])), provider=provider, store=store
    ) as daemon:
        for i in range(REPORT_HISTORY_SIZE + 25):
            await daemon.run_cycle(LookupTrigger(timestamp=float(i)))

    reports = daemon.reports
    assert provider.calls == REPORT_HISTORY_SIZE + 25
    assert len(reports) == REPORT_HISTORY_SIZE
    assert reports[0].trigger.timestamp == 25.0
    assert reports[-1].trigger.timestamp == float(REPORT_HISTORY_SIZE + 24)
