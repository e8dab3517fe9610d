"""Custom exception hierarchy for the KidTimer package."""

from __future__ import annotations


class KidTimerError(Exception):
    """Base class for all KidTimer specific errors."""


class ValidationError(KidTimerError):
    """Raised when a submitted form is missing a required or valid field."""


class PersistenceError(KidTimerError):
    """Raised when the document store fails to read, write or delete."""


class CreationError(PersistenceError):
    """Raised when a new timer cannot be written to the document store."""


class NotFoundError(KidTimerError):
    """Raised when a referenced record no longer exists."""


class ChildNotFoundError(NotFoundError):
    """Raised when a child lookup fails for the signed-in parent."""


class ActivityNotFoundError(NotFoundError):
    """Raised when an activity lookup fails."""


class TimerNotFoundError(NotFoundError):
    """Raised when a timer lookup fails."""


class AuthenticationError(KidTimerError):
    """Raised when sign-in credentials are rejected or the account is locked."""
