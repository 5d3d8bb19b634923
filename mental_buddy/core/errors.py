"""Tagged error variants raised at each boundary.

Each boundary decides its failure class once and raises one of these:
- InvalidInputError: rejected input, no network or storage call made
- PersistenceError / NotFoundError: storage writes, reads and lookups
- RelayError and subclasses: language-model relay failures
- SubscriptionError: terminal event of a live query
"""
from typing import Optional


class BuddyError(Exception):
    """Base error carrying a user-facing message and an HTTP status."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidInputError(BuddyError):
    """Input rejected before any outbound call."""

    status_code = 400


class PersistenceError(BuddyError):
    """Storage operation failed."""


class NotFoundError(PersistenceError):
    """Record missing or not owned by the requesting user."""

    status_code = 404


class RelayError(BuddyError):
    """Base class for language-model relay failures."""


class RelayTransportError(RelayError):
    """The provider could not be reached."""


class ProviderError(RelayError):
    """The provider answered with a non-success status."""


class RelayInternalError(RelayError):
    """Relay misconfigured or the provider reply could not be parsed."""


class SubscriptionError(BuddyError):
    """A live query failed and will deliver no further snapshots."""
