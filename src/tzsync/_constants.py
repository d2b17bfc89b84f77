"""Internal constants shared across the package."""

DEFAULT_RESOLVER_ENDPOINT = "https://ipapi.co/json/"
USER_AGENT = "tzsync/0.3"

# ------------------------------------------------------------------
# iwd (net.connman.iwd) on the system bus
# ------------------------------------------------------------------

IWD_SERVICE = "net.connman.iwd"
IWD_STATION_INTERFACE = "net.connman.iwd.Station"

# ------------------------------------------------------------------
# systemd-timedated
# ------------------------------------------------------------------

TIMEDATED_SERVICE = "org.freedesktop.timedate1"
TIMEDATED_PATH = "/org/freedesktop/timedate1"
TIMEDATED_INTERFACE = "org.freedesktop.timedate1"

DBUS_SERVICE = "org.freedesktop.DBus"
DBUS_PATH = "/org/freedesktop/DBus"
DBUS_PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"
DBUS_OBJECT_MANAGER_INTERFACE = "org.freedesktop.DBus.ObjectManager"

# ------------------------------------------------------------------
# Lookup retry and resubscription backoff
# ------------------------------------------------------------------

#: Upper bound for a single backoff sleep between lookup attempts.
RETRY_BACKOFF_CAP: float = 30.0

#: Statuses treated as transient in addition to the 5xx class.
TRANSIENT_HTTP_STATUSES: frozenset[int] = frozenset({408, 425, 429})

RESUBSCRIBE_BACKOFF_INITIAL: float = 1.0
RESUBSCRIBE_BACKOFF_MAX: float = 60.0

# Finished cycles kept on the daemon for inspection.
REPORT_HISTORY_SIZE = 100
