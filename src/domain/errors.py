"""
Typed failures raised by the ride core.

Every error is raised *before* the repository save, so a failed call never
leaves a partial mutation behind.  ``status_code`` is what the API layer
answers with.
"""


class RideError(Exception):
    status_code = 400


class InvalidLocation(RideError):
    """Pickup / drop missing or not a ``[longitude, latitude]`` pair."""


class InvalidCoordinate(RideError):
    """A coordinate is not a finite number."""


class InvalidSeatCount(RideError):
    """``seats_requested`` is not a positive whole number."""


class InvalidOtp(RideError):
    pass


class NotAuthorized(RideError):
    status_code = 403


class RideNotFound(RideError):
    status_code = 404


class RequestNotFound(RideError):
    status_code = 404


class AlreadyAccepted(RideError):
    status_code = 409


class AlreadyRequested(RideError):
    status_code = 409


class RideFull(RideError):
    status_code = 409


class InvalidStateTransition(RideError):
    """Raised when a ride status change violates the state machine."""

    status_code = 409


class ConflictError(RideError):
    """Concurrent write detected on the ride (stale version or busy lock)."""

    status_code = 409
