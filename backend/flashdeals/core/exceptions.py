"""Custom exception classes for the application.

Every error raised by the service layer derives from FlashDealsException and
carries a machine-readable ``code`` plus the HTTP status the API layer should
answer with. None of them are fatal to the process.
"""

from typing import Optional


class FlashDealsException(Exception):
    """Base exception for all FlashDeals errors."""

    code = "error"
    status_code = 400

    def __init__(self, message: str = "An unexpected error occurred", field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(self.message)


class ValidationError(FlashDealsException):
    """Raised when input is malformed (missing field, bad price or time ordering)."""

    code = "validation_error"
    status_code = 422


class AuthenticationError(FlashDealsException):
    """Raised when credentials or tokens are missing or invalid."""

    code = "authentication_error"
    status_code = 401


class AuthorizationError(FlashDealsException):
    """Raised when the caller lacks ownership or role for an action."""

    code = "authorization_error"
    status_code = 403


class NotFoundError(FlashDealsException):
    """Raised when a requested resource is not found."""

    code = "not_found"
    status_code = 404

    def __init__(self, resource: str, identifier):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} with identifier '{identifier}' not found")


class DealUnavailableError(FlashDealsException):
    """Raised when a claim is attempted outside a deal's window or capacity."""

    NOT_STARTED = "not_started"
    EXPIRED = "expired"
    CAPACITY_EXHAUSTED = "capacity_exhausted"
    INACTIVE = "inactive"

    REASONS = (NOT_STARTED, EXPIRED, CAPACITY_EXHAUSTED, INACTIVE)

    _MESSAGES = {
        NOT_STARTED: "Deal has not started yet",
        EXPIRED: "Deal is no longer available",
        CAPACITY_EXHAUSTED: "Deal has reached maximum redemptions",
        INACTIVE: "Deal is no longer available",
    }

    code = "deal_unavailable"
    status_code = 409

    def __init__(self, reason: str):
        if reason not in self.REASONS:
            raise ValueError(f"Unknown unavailability reason: {reason}")
        self.reason = reason
        super().__init__(self._MESSAGES[reason])


class DuplicateClaimError(FlashDealsException):
    """Raised when a user already holds an active claim on a deal."""

    code = "duplicate_claim"
    status_code = 409

    def __init__(self, message: str = "Deal already claimed"):
        super().__init__(message)


class DuplicateSaveError(FlashDealsException):
    """Raised when a user saves a deal that is already saved."""

    code = "duplicate_save"
    status_code = 409

    def __init__(self, message: str = "Deal already saved"):
        super().__init__(message)


class ConcurrencyConflictError(FlashDealsException):
    """Raised when a claim lost the race on the conditional capacity update."""

    code = "concurrency_conflict"
    status_code = 409

    def __init__(self, message: str = "Deal was updated concurrently, please retry"):
        super().__init__(message)
