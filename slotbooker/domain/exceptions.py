"""
Domain-specific exception hierarchy for the booking engine.

Every error carries a ``retryable`` flag so callers can tell caller mistakes
and business conflicts apart from infrastructure failures.
"""


class SchedulingError(Exception):
    """Base class for all application-level errors."""

    retryable = False


class InvalidRequestError(SchedulingError):
    """Raised when the caller supplied unusable input."""


class ServiceNotFoundError(InvalidRequestError):
    """Raised when a requested service is unknown or inactive."""


class ProfessionalNotFoundError(InvalidRequestError):
    """Raised when a professional id does not resolve."""


class IncapableProfessionalError(InvalidRequestError):
    """Raised when a professional cannot perform every requested service."""


class PastBookingError(InvalidRequestError):
    """Raised when a booking would start in the past."""


class LateCancellationError(InvalidRequestError):
    """Raised when a cancellation comes later than the configured notice allows."""


class BookingConflictError(SchedulingError):
    """Raised when the requested time is no longer free for the professional."""


class StoreUnavailableError(SchedulingError):
    """Raised when a store or transaction cannot be reached or completed."""

    retryable = True


class RosterApiError(StoreUnavailableError):
    """Raised when the roster administration API returns an unusable answer."""
