"""Custom exception hierarchy for tzsync."""

from __future__ import annotations


class TzSyncError(Exception):
    """Base exception for all tzsync errors."""


class TzSyncConfigError(TzSyncError):
    """Invalid or missing configuration.

    Fatal at startup: raised before any bus subscription begins.
    """


class SubscriptionLostError(TzSyncError):
    """The bus subscription dropped or could not be established.

    Never fatal. The daemon resubscribes with backoff.
    """


class ResolverError(TzSyncError):
    """Base for geolocation lookup failures."""


class _LookupError(ResolverError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class TransientLookupError(_LookupError):
    """Network error, timeout, 429 or 5xx response. Worth retrying."""


class PermanentLookupError(_LookupError):
    """Malformed response, client error or unsupported location.

    Retrying the same request would give the same answer.
    """


class ResolutionFailedError(ResolverError):
    """A lookup cycle ended without a usable timezone.

    Raised once retries are exhausted, the overall deadline passed, or a
    permanent failure occurred. The underlying error is chained as
    ``__cause__``.
    """

    def __init__(self, message: str, *, attempts: int, permanent: bool = False) -> None:
        self.attempts = attempts
        self.permanent = permanent
        super().__init__(message)


class ApplyError(TzSyncError):
    """The operating system rejected or did not complete a timezone change.

    The previously configured timezone remains authoritative.
    """

    def __init__(self, message: str, *, timezone: str = "", error_name: str | None = None) -> None:
        self.timezone = timezone
        self.error_name = error_name
        super().__init__(message)
