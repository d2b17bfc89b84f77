"""systemd-timedated timezone store.

``SetTimezone`` replaces ``/etc/localtime`` atomically and notifies the
kernel and time-dependent services, so a successful reply means the new
zone is fully in effect.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from dbus_fast import BusType, Message, MessageType, Variant
from dbus_fast.aio import MessageBus
from dbus_fast.errors import AuthError, DBusError

from tzsync._constants import (
    DBUS_PROPERTIES_INTERFACE,
    TIMEDATED_INTERFACE,
    TIMEDATED_PATH,
    TIMEDATED_SERVICE,
)
from tzsync.exceptions import ApplyError

_logger = logging.getLogger(__name__)


async def _connect_system_bus() -> MessageBus:
    return await MessageBus(bus_type=BusType.SYSTEM).connect()


def _error_text(reply: Any) -> str:
    body = getattr(reply, "body", None)
    if body and isinstance(body[0], str):
        return body[0]
    return ""


class TimedatedTimezoneStore:
    """Reads and sets the system timezone through ``org.freedesktop.timedate1``."""

    def __init__(
        self,
        *,
        bus: MessageBus | None = None,
        bus_factory: Callable[[], Awaitable[MessageBus]] = _connect_system_bus,
    ) -> None:
        self._bus = bus
        self._bus_factory = bus_factory

    async def _connection(self) -> MessageBus:
        bus = self._bus
        if bus is not None and bus.connected:
            return bus
        try:
            bus = await self._bus_factory()
        except (EOFError, OSError, AuthError, DBusError) as exc:
            raise ApplyError(f"Could not connect to the system bus: {exc}") from exc
        self._bus = bus
        return bus

    async def _call(self, msg: Message, *, timezone: str = "") -> Message:
        bus = await self._connection()
        try:
            reply = await bus.call(msg)
        except (EOFError, OSError, DBusError) as exc:
            _logger.debug("System bus call %s failed; reconnecting on next use", msg.member)
            self._drop(bus)
            raise ApplyError(f"{msg.member} call on the system bus failed: {exc!r}", timezone=timezone) from exc
        if reply is None:
            raise ApplyError(f"No reply to {msg.member} from {TIMEDATED_SERVICE}", timezone=timezone)
        if reply.message_type == MessageType.ERROR:
            raise ApplyError(
                f"{msg.member} failed: {reply.error_name}: {_error_text(reply)}",
                timezone=timezone,
                error_name=reply.error_name,
            )
        return reply

    async def current(self) -> str:
        """Return the configured timezone identifier."""
        reply = await self._call(
            Message(
                destination=TIMEDATED_SERVICE,
                path=TIMEDATED_PATH,
                interface=DBUS_PROPERTIES_INTERFACE,
                member="Get",
                signature="ss",
                body=[TIMEDATED_INTERFACE, "Timezone"],
            )
        )
        value = reply.body[0]
        if isinstance(value, Variant):
            value = value.value
        if not isinstance(value, str):
            raise ApplyError(f"Unexpected Timezone property value: {value!r}")
        return value

    async def set(self, timezone: str) -> None:
        """Set the system timezone without interactive authorization."""
        _logger.debug("Calling %s.SetTimezone(%s)", TIMEDATED_INTERFACE, timezone)
        await self._call(
            Message(
                destination=TIMEDATED_SERVICE,
                path=TIMEDATED_PATH,
                interface=TIMEDATED_INTERFACE,
                member="SetTimezone",
                signature="sb",
                body=[timezone, False],
            ),
            timezone=timezone,
        )

    def _drop(self, bus: MessageBus) -> None:
        if self._bus is bus:
            self._bus = None
        if bus.connected:
            bus.disconnect()

    def close(self) -> None:
        bus = self._bus
        if bus is not None:
            self._drop(bus)
