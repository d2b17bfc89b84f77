"""iwd station subscription over the D-Bus system bus.

Listens for ``PropertiesChanged`` on ``net.connman.iwd.Station`` objects
and for stations appearing or disappearing through the ObjectManager
signals, and queues one :class:`BusNotification` per announcement.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from dbus_fast import BusType, Message, MessageType, Variant
from dbus_fast.aio import MessageBus
from dbus_fast.errors import AuthError, DBusError

from tzsync._constants import (
    DBUS_OBJECT_MANAGER_INTERFACE,
    DBUS_PATH,
    DBUS_PROPERTIES_INTERFACE,
    DBUS_SERVICE,
    IWD_SERVICE,
    IWD_STATION_INTERFACE,
)
from tzsync.exceptions import SubscriptionLostError
from tzsync.models.connectivity import BusNotification, InterfacePhase

_logger = logging.getLogger(__name__)

# iwd Station.State values. "roaming" keeps the association, so it is not
# a phase change.
_STATION_PHASES: dict[str, InterfacePhase] = {
    "connected": InterfacePhase.CONNECTED,
    "connecting": InterfacePhase.CONNECTING,
    "disconnecting": InterfacePhase.DISCONNECTED,
    "disconnected": InterfacePhase.DISCONNECTED,
}

_MATCH_RULES: tuple[str, ...] = (
    f"type='signal',sender='{IWD_SERVICE}',interface='{DBUS_PROPERTIES_INTERFACE}',"
    f"member='PropertiesChanged',arg0='{IWD_STATION_INTERFACE}'",
    f"type='signal',sender='{IWD_SERVICE}',interface='{DBUS_OBJECT_MANAGER_INTERFACE}'",
)

_LOST = object()


def _unwrap(value: Any) -> Any:
    return value.value if isinstance(value, Variant) else value


def station_phase(state: Any) -> InterfacePhase | None:
    """Map an iwd ``Station.State`` string to an :class:`InterfacePhase`."""
    if not isinstance(state, str):
        return None
    return _STATION_PHASES.get(state.strip().lower())


def _station_notification(path: str, properties: dict[str, Any]) -> BusNotification | None:
    if "State" not in properties:
        return None
    phase = station_phase(_unwrap(properties["State"]))
    if phase is None:
        return None
    return BusNotification(interface=path, phase=phase)


def parse_iwd_signal(msg: Message) -> BusNotification | None:
    """Translate one bus message into a notification, or ``None`` if irrelevant."""
    if msg.message_type != MessageType.SIGNAL or not msg.path:
        return None

    if msg.interface == DBUS_PROPERTIES_INTERFACE and msg.member == "PropertiesChanged":
        if len(msg.body) < 2 or msg.body[0] != IWD_STATION_INTERFACE:
            return None
        changed = msg.body[1]
        if not isinstance(changed, dict):
            return None
        return _station_notification(msg.path, changed)

    if msg.interface == DBUS_OBJECT_MANAGER_INTERFACE and len(msg.body) >= 2:
        path, payload = msg.body[0], msg.body[1]
        if msg.member == "InterfacesRemoved":
            if IWD_STATION_INTERFACE in payload:
                return BusNotification(interface=path, removed=True)
            return None
        if msg.member == "InterfacesAdded" and isinstance(payload, dict):
            station = payload.get(IWD_STATION_INTERFACE)
            if isinstance(station, dict):
                return _station_notification(path, station)

    return None


def parse_managed_objects(objects: dict[str, Any]) -> list[BusNotification]:
    """Current station states from an iwd ``GetManagedObjects`` reply."""
    notifications: list[BusNotification] = []
    for path, interfaces in sorted(objects.items()):
        station = interfaces.get(IWD_STATION_INTERFACE) if isinstance(interfaces, dict) else None
        if not isinstance(station, dict):
            continue
        notification = _station_notification(path, station)
        if notification is not None:
            notifications.append(notification)
    return notifications


async def _connect_system_bus() -> MessageBus:
    return await MessageBus(bus_type=BusType.SYSTEM).connect()


class IwdSubscription:
    """Async context manager delivering iwd station notifications.

    Usage::

        async with IwdSubscription() as subscription:
            async for notification in subscription:
                ...

    Iteration raises :class:`SubscriptionLostError` when the bus
    connection drops.
    """

    def __init__(
        self,
        *,
        sync_on_start: bool = True,
        bus_factory: Callable[[], Awaitable[MessageBus]] = _connect_system_bus,
    ) -> None:
        self._sync_on_start = sync_on_start
        self._bus_factory = bus_factory
        self._bus: MessageBus | None = None
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._watcher: asyncio.Task[None] | None = None

    async def __aenter__(self) -> IwdSubscription:
        try:
            bus = await self._bus_factory()
        except (EOFError, OSError, AuthError, DBusError) as exc:
            raise SubscriptionLostError(f"Could not connect to the system bus: {exc}") from exc
        self._bus = bus
        bus.add_message_handler(self._on_message)

        try:
            for rule in _MATCH_RULES:
                await self._add_match(bus, rule)
            if self._sync_on_start:
                for notification in await self._current_stations(bus):
                    self._queue.put_nowait(notification)
        except (EOFError, OSError, DBusError) as exc:
            self._close()
            raise SubscriptionLostError(f"System bus failed while subscribing: {exc!r}") from exc
        except BaseException:
            self._close()
            raise

        self._watcher = asyncio.ensure_future(bus.wait_for_disconnect())
        self._watcher.add_done_callback(self._on_disconnect)
        _logger.debug("Subscribed to iwd station signals")
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self._close()

    def __aiter__(self) -> AsyncIterator[BusNotification]:
        return self.notifications()

    async def notifications(self) -> AsyncIterator[BusNotification]:
        while True:
            item = await self._queue.get()
            if item is _LOST:
                raise SubscriptionLostError("System bus connection lost")
            yield item

    def _close(self) -> None:
        watcher = self._watcher
        self._watcher = None
        if watcher is not None:
            watcher.remove_done_callback(self._on_disconnect)
            watcher.cancel()
        bus = self._bus
        self._bus = None
        if bus is not None:
            bus.remove_message_handler(self._on_message)
            if bus.connected:
                bus.disconnect()

    def _on_message(self, msg: Message) -> None:
        notification = parse_iwd_signal(msg)
        if notification is not None:
            self._queue.put_nowait(notification)

    def _on_disconnect(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.debug("System bus disconnected with error", exc_info=exc)
        self._queue.put_nowait(_LOST)

    async def _add_match(self, bus: MessageBus, rule: str) -> None:
        reply = await bus.call(
            Message(
                destination=DBUS_SERVICE,
                path=DBUS_PATH,
                interface=DBUS_SERVICE,
                member="AddMatch",
                signature="s",
                body=[rule],
            )
        )
        if reply is None or reply.message_type == MessageType.ERROR:
            detail = reply.error_name if reply is not None else "no reply"
            raise SubscriptionLostError(f"AddMatch rejected: {detail}")

    async def _current_stations(self, bus: MessageBus) -> list[BusNotification]:
        reply = await bus.call(
            Message(
                destination=IWD_SERVICE,
                path="/",
                interface=DBUS_OBJECT_MANAGER_INTERFACE,
                member="GetManagedObjects",
            )
        )
        if reply is None or reply.message_type == MessageType.ERROR:
            _logger.warning(
                "Could not read current iwd stations: %s",
                reply.error_name if reply is not None else "no reply",
            )
            return []
        return parse_managed_objects(reply.body[0])
