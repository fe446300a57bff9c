class TinyLinkError(Exception):
    status_code = 500
    detail = "Internal error"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.detail)
        if detail:
            self.detail = detail


class InvalidInput(TinyLinkError):
    status_code = 400
    detail = "Invalid input"


class Unauthorized(TinyLinkError):
    status_code = 403
    detail = "Not authorized"


class AuthenticationRequired(Unauthorized):
    status_code = 401
    detail = "Authentication required"


class NotFound(TinyLinkError):
    status_code = 404
    detail = "Not found"


class Conflict(TinyLinkError):
    status_code = 409
    detail = "Short code already in use"


class StoreUnavailable(TinyLinkError):
    """The store could not be reached; callers may retry."""
    status_code = 503
    detail = "Storage temporarily unavailable"


class ResourceExhausted(TinyLinkError):
    status_code = 503
    detail = "Could not allocate a free short code"


# Errors whose responses should carry Retry-After
RETRYABLE = (StoreUnavailable, ResourceExhausted)
