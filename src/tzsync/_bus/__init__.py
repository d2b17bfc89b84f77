"""D-Bus adapters for iwd and systemd-timedated."""

from tzsync._bus.iwd import IwdSubscription
from tzsync._bus.timedated import TimedatedTimezoneStore

__all__ = ["IwdSubscription", "TimedatedTimezoneStore"]
