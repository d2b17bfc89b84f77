"""Data models flowing through the tzsync pipeline."""

from tzsync.models.connectivity import (
    VALID_TRANSITIONS,
    BusNotification,
    ConnectivityEvent,
    InterfacePhase,
    InterfaceState,
    LookupTrigger,
)
from tzsync.models.location import LocationResult, is_timezone_identifier
from tzsync.models.timezone import ApplyOutcome, CycleOutcome, CycleReport, SystemTimezoneState

__all__ = [
    "VALID_TRANSITIONS",
    "ApplyOutcome",
    "BusNotification",
    "ConnectivityEvent",
    "CycleOutcome",
    "CycleReport",
    "InterfacePhase",
    "InterfaceState",
    "LocationResult",
    "LookupTrigger",
    "SystemTimezoneState",
    "is_timezone_identifier",
]
