"""Connectivity observer.

Turns the raw stream of bus notifications into a de-duplicated sequence
of :class:`ConnectivityEvent`, one per genuine transition into Connected.
The bus may repeat identical announcements or deliver them out of order,
so state is re-derived from each notification's phase value.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterable, AsyncIterator, Callable

from tzsync.models.connectivity import (
    VALID_TRANSITIONS,
    BusNotification,
    ConnectivityEvent,
    InterfacePhase,
    InterfaceState,
)

_logger = logging.getLogger(__name__)


def _path_to(current: InterfacePhase, target: InterfacePhase) -> list[InterfacePhase]:
    """Phases to step through from *current* to reach *target* over valid edges."""
    if current == target:
        return []
    if (current, target) in VALID_TRANSITIONS:
        return [target]
    # Every non-adjacent pair is bridged by exactly one intermediate phase:
    # Disconnected -> Connecting -> Connected, Connected -> Disconnected -> Connecting.
    for middle in InterfacePhase:
        if (current, middle) in VALID_TRANSITIONS and (middle, target) in VALID_TRANSITIONS:
            return [middle, target]
    raise ValueError(f"no transition path {current} -> {target}")


class ConnectivityObserver:
    """Tracks per-interface phase and reports new associations.

    State lives only for the duration of one subscription; :meth:`observe`
    resets it on every call.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._interfaces: dict[str, InterfaceState] = {}

    @property
    def interfaces(self) -> dict[str, InterfaceState]:
        return dict(self._interfaces)

    def reset(self) -> None:
        self._interfaces.clear()

    def is_connected(self, interface: str | None = None) -> bool:
        """Whether *interface* (or, when ``None``, any interface) is Connected."""
        if interface is not None:
            state = self._interfaces.get(interface)
            return state is not None and state.phase == InterfacePhase.CONNECTED
        return any(state.phase == InterfacePhase.CONNECTED for state in self._interfaces.values())

    def handle(self, notification: BusNotification) -> ConnectivityEvent | None:
        """Apply one notification and return an event for a change into Connected."""
        name = notification.interface
        if notification.removed:
            if self._interfaces.pop(name, None) is not None:
                _logger.debug("Interface %s removed", name)
            return None

        target = notification.phase
        if target is None:
            return None

        now = self._clock()
        state = self._interfaces.get(name)
        if state is None:
            state = InterfaceState(interface=name, last_transition=now)

        steps = _path_to(state.phase, target)
        if not steps:
            self._interfaces[name] = state
            return None
        if len(steps) > 1:
            _logger.debug(
                "Interface %s jumped %s -> %s; assuming missed %s",
                name,
                state.phase,
                target,
                steps[0],
            )

        for phase in steps:
            state = state.transition(phase, now)
        self._interfaces[name] = state
        _logger.debug("Interface %s is now %s", name, state.phase)

        if state.phase == InterfacePhase.CONNECTED:
            return ConnectivityEvent(interface=name, timestamp=now)
        return None

    async def observe(self, notifications: AsyncIterable[BusNotification]) -> AsyncIterator[ConnectivityEvent]:
        """Yield a :class:`ConnectivityEvent` per new association.

        Raises whatever the notification source raises, typically
        :class:`~tzsync.exceptions.SubscriptionLostError`; resubscribing is
        the caller's job.
        """
        self.reset()
        async for notification in notifications:
            event = self.handle(notification)
            if event is not None:
                yield event
