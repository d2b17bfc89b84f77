"""Timezone applier: idempotent change of the operating-system timezone."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from tzsync.exceptions import ApplyError
from tzsync.models.timezone import ApplyOutcome, SystemTimezoneState

_logger = logging.getLogger(__name__)


class TimezoneStore(Protocol):
    """Structural interface for the operating-system timezone setting.

    ``set`` must be all-or-nothing: either the new timezone is fully in
    effect afterwards or the previous one is untouched.
    """

    async def current(self) -> str:
        ...

    async def set(self, timezone: str) -> None:
        ...


class TimezoneApplier:
    """Apply a resolved timezone only when it differs from the current one."""

    def __init__(self, store: TimezoneStore, *, timeout: float = 10.0) -> None:
        self._store = store
        self._timeout = timeout

    async def read(self) -> SystemTimezoneState:
        """Read the currently configured system timezone."""
        try:
            async with asyncio.timeout(self._timeout):
                current = await self._store.current()
        except TimeoutError as exc:
            raise ApplyError(f"Reading the system timezone timed out after {self._timeout:.1f}s") from exc
        except OSError as exc:
            raise ApplyError(f"Reading the system timezone failed: {exc}") from exc
        return SystemTimezoneState(timezone=current)

    async def apply(self, timezone: str) -> ApplyOutcome:
        """Make *timezone* the system timezone.

        Returns :attr:`ApplyOutcome.NO_CHANGE` without writing anything
        when it is already configured.

        Raises
        ------
        ApplyError
            If the store rejects the change or does not answer in time.
        """
        state = await self.read()
        if state.timezone == timezone:
            _logger.debug("System timezone already %s", timezone)
            return ApplyOutcome.NO_CHANGE

        try:
            async with asyncio.timeout(self._timeout):
                await self._store.set(timezone)
        except TimeoutError as exc:
            raise ApplyError(
                f"Setting the system timezone to {timezone} timed out after {self._timeout:.1f}s",
                timezone=timezone,
            ) from exc
        except ApplyError:
            raise
        except OSError as exc:
            raise ApplyError(f"Setting the system timezone to {timezone} failed: {exc}", timezone=timezone) from exc

        _logger.info("System timezone changed from %s to %s", state.timezone, timezone)
        return ApplyOutcome.CHANGED
