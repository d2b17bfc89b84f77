"""Connectivity state and pipeline event models."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class InterfacePhase(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


#: The only edges an interface may take between phases.
VALID_TRANSITIONS: frozenset[tuple[InterfacePhase, InterfacePhase]] = frozenset(
    {
        (InterfacePhase.DISCONNECTED, InterfacePhase.CONNECTING),
        (InterfacePhase.CONNECTING, InterfacePhase.CONNECTED),
        (InterfacePhase.CONNECTED, InterfacePhase.DISCONNECTED),
        (InterfacePhase.CONNECTING, InterfacePhase.DISCONNECTED),
    }
)


def _non_empty(value: str, name: str) -> str:
    stripped = value.strip()
    if not stripped:
        raise ValueError(f"{name} must be non-empty")
    return stripped


class InterfaceState(BaseModel):
    """Current connectivity phase of one network interface.

    Instances are immutable; :meth:`transition` returns the next state.
    """

    model_config = ConfigDict(frozen=True)

    interface: str
    phase: InterfacePhase = InterfacePhase.DISCONNECTED
    last_transition: float = 0.0

    @field_validator("interface")
    @classmethod
    def _normalize_interface(cls, value: str) -> str:
        return _non_empty(value, "interface")

    def transition(self, phase: InterfacePhase, at: float) -> InterfaceState:
        """Move to *phase*.

        Returns ``self`` when the phase is unchanged. Raises
        :class:`ValueError` for an edge outside :data:`VALID_TRANSITIONS`.
        """
        if phase == self.phase:
            return self
        if (self.phase, phase) not in VALID_TRANSITIONS:
            raise ValueError(f"invalid transition {self.phase} -> {phase} for {self.interface}")
        return self.model_copy(update={"phase": phase, "last_transition": at})


class BusNotification(BaseModel):
    """One connectivity announcement as delivered by the bus adapter.

    ``phase`` is ``None`` when the announcement carries no phase the
    daemon cares about. ``removed`` marks the interface disappearing.
    """

    model_config = ConfigDict(frozen=True)

    interface: str
    phase: InterfacePhase | None = None
    removed: bool = False

    @field_validator("interface")
    @classmethod
    def _normalize_interface(cls, value: str) -> str:
        return _non_empty(value, "interface")


class ConnectivityEvent(BaseModel):
    """An interface completed a transition into Connected."""

    model_config = ConfigDict(frozen=True)

    interface: str
    timestamp: float

    @field_validator("interface")
    @classmethod
    def _normalize_interface(cls, value: str) -> str:
        return _non_empty(value, "interface")


class LookupTrigger(BaseModel):
    """A settled, rate-limited request for a location lookup."""

    model_config = ConfigDict(frozen=True)

    timestamp: float = Field(ge=0.0)
    suppressed_count: int = Field(default=0, ge=0)
    interface: str | None = Field(default=None, description="Interface of the last event in the burst")
