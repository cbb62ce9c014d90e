"""Error taxonomy for the Mento backend.

Every error maps to one HTTP status. Handlers in ``mento.main`` render them
into the ``{"success": false, "message": ...}`` envelope.
"""


class ApiError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequest(ApiError):
    status_code = 400
    default_message = "Bad request"


class Unauthenticated(ApiError):
    status_code = 401
    default_message = "Authentication required"


class Forbidden(ApiError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found"


class RateLimited(ApiError):
    status_code = 429
    default_message = "Too many requests. Please try again later."

    def __init__(self, message: str | None = None, retry_after: int | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class InternalError(ApiError):
    status_code = 500
    default_message = "Internal server error"


class InvalidSignature(BadRequest):
    """Payment signature did not match the expected HMAC."""

    default_message = "Invalid payment signature"


class SubscriptionRequired(BadRequest):
    """The caller is identified but holds no active subscription of the needed type."""

    default_message = "An active subscription is required"
