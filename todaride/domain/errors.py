"""
Error taxonomy shared by services, the API layer and the realtime hub.

Every error carries an HTTP status and a stable machine-readable ``code``
so the exception handler in ``todaride.api.errors`` can render them
uniformly.
"""

from __future__ import annotations


class RideHailingError(Exception):
    status_code: int = 500
    code: str = "error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(RideHailingError):
    """Malformed or missing input. Never retried automatically."""

    status_code = 400
    code = "validation_error"


class UnauthorizedError(RideHailingError):
    status_code = 401
    code = "unauthorized"

    def __init__(self, message: str = "", *, banned: bool = False):
        super().__init__(message)
        if banned:
            self.status_code = 403


class InvalidRoleError(RideHailingError):
    status_code = 403
    code = "invalid_role"


class NotFoundError(RideHailingError):
    status_code = 404
    code = "not_found"


class ConflictError(RideHailingError):
    """A state precondition failed: lost a race or the entity is terminal."""

    status_code = 409
    code = "conflict"


class InvalidTransitionError(ConflictError):
    """Raised when a ride status change violates the state machine."""

    code = "invalid_transition"


class UpstreamTimeoutError(RideHailingError):
    """The directions provider failed or timed out. Recovered locally."""

    status_code = 504
    code = "upstream_timeout"


class InternalError(RideHailingError):
    status_code = 500
    code = "internal_error"
