"""
Exception taxonomy for the patrol core.

ConfigurationError is fatal and only raised at startup. FetchError and
StoreError are contained within a single patrol cycle.
"""

from patrol.models import FailureKind


class PatrolError(Exception):
    """Base class for all patrol errors."""


class ConfigurationError(PatrolError):
    """Missing or invalid configuration; the process must not start patrolling."""


class FetchError(PatrolError):
    """A page could not be rendered."""

    kind = FailureKind.UNKNOWN


class FetchConnectionError(FetchError):
    """The rendering backend or the page host could not be reached."""

    kind = FailureKind.CONNECTION


class FetchTimeoutError(FetchError):
    """Rendering did not finish in time."""

    kind = FailureKind.TIMEOUT


class NavigationError(FetchError):
    """The page loaded badly or the awaited element never appeared."""

    kind = FailureKind.NAVIGATION


class UnknownFetchError(FetchError):
    """Any other rendering failure."""

    kind = FailureKind.UNKNOWN


class EmptyContentError(FetchError):
    """Rendered content is empty after normalization."""

    kind = FailureKind.EMPTY_CONTENT


class StoreError(PatrolError):
    """Fingerprint store read or write failed (not-found is not an error)."""

    kind = FailureKind.STORE


class NotifierError(PatrolError):
    """A notification could not be delivered."""
