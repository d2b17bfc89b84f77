"""tzsync - keep the system timezone in sync with wireless associations."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("tzsync")
except PackageNotFoundError:
    __version__ = "0+local"
from tzsync.applier import TimezoneApplier, TimezoneStore
from tzsync.config import TzSyncConfig
from tzsync.daemon import TzSyncDaemon
from tzsync.exceptions import (
    ApplyError,
    PermanentLookupError,
    ResolutionFailedError,
    ResolverError,
    SubscriptionLostError,
    TransientLookupError,
    TzSyncConfigError,
    TzSyncError,
)
from tzsync.gate import LookupGate
from tzsync.models import (
    ApplyOutcome,
    BusNotification,
    ConnectivityEvent,
    CycleOutcome,
    CycleReport,
    InterfacePhase,
    InterfaceState,
    LocationResult,
    LookupTrigger,
    SystemTimezoneState,
)
from tzsync.observer import ConnectivityObserver
from tzsync.resolver import LocationResolver

__all__ = [
    "__version__",
    "ApplyError",
    "ApplyOutcome",
    "BusNotification",
    "ConnectivityEvent",
    "ConnectivityObserver",
    "CycleOutcome",
    "CycleReport",
    "InterfacePhase",
    "InterfaceState",
    "LocationResolver",
    "LocationResult",
    "LookupGate",
    "LookupTrigger",
    "PermanentLookupError",
    "ResolutionFailedError",
    "ResolverError",
    "SubscriptionLostError",
    "SystemTimezoneState",
    "TimezoneApplier",
    "TimezoneStore",
    "TransientLookupError",
    "TzSyncConfig",
    "TzSyncConfigError",
    "TzSyncDaemon",
    "TzSyncError",
]
