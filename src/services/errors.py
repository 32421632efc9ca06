"""Error classification for relayed requests."""


class ProxyError(Exception):
    """Raised when proxy operations fail.

    Each subclass fixes the HTTP status and the ``error`` label rendered to
    the caller; the exception message becomes the ``message`` field.
    """

    status_code = 500
    error = "Internal proxy error"


class RequestValidationError(ProxyError):
    """Raised when the request envelope or its options are invalid."""

    status_code = 400

    def __init__(self, error: str, message: str):
        super().__init__(message)
        self.error = error


class ForbiddenTargetError(ProxyError):
    """Raised when the target host is blocked by policy."""

    status_code = 403
    error = "Local URLs not allowed"


class UpstreamTimeoutError(ProxyError):
    """Raised when the outbound call exceeds its timeout."""

    status_code = 504
    error = "Request timeout"


class UpstreamNetworkError(ProxyError):
    """Raised when the outbound call fails at the transport layer."""

    status_code = 502
    error = "Network error or invalid URL"
