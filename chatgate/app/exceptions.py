"""Custom exceptions for the gateway application.

Every rejection a client can see maps to one of these classes. Each carries
a stable reason ``code`` so clients can branch without parsing messages.
"""

from typing import Any, Dict, List, Optional


class GatewayException(Exception):
    """Base class for gateway exceptions with HTTP status code.

    All custom exceptions inherit from this class and define their specific
    status_code, reason code and log category.
    """
    status_code: int = 500
    code: str = "GATEWAY_ERROR"
    category: str = "internal"

    def __init__(self, message: str = "Gateway error"):
        self.message = message
        super().__init__(message)

    def to_response(self) -> Dict[str, Any]:
        """Convert to the JSON error body returned to clients."""
        return {"error": self.message, "code": self.code}

    def response_headers(self) -> Dict[str, str]:
        return {}


class ValidationError(GatewayException):
    """Raised for malformed input: bad type, length or identifier format.

    User-correctable. Maps to HTTP 400 Bad Request.
    """
    status_code = 400
    code = "VALIDATION_ERROR"
    category = "validation"


class SecurityRejectionError(GatewayException):
    """Raised when input screening exceeds the threat or encoding threshold.

    Only the matched pattern identifiers are kept on the exception; the
    offending text is never attached, so it cannot leak into logs.
    Maps to HTTP 400 Bad Request.
    """
    status_code = 400
    code = "SECURITY_REJECTION"
    category = "security"

    def __init__(
        self,
        reason: str,
        score: int = 0,
        patterns: Optional[List[str]] = None,
        message: str = "Message rejected by content policy",
    ):
        self.reason = reason
        self.score = score
        self.patterns = list(patterns or [])
        super().__init__(message)

    def to_response(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, "reason": self.reason}


class RateLimitExceededError(GatewayException):
    """Raised when a client identity has exhausted one of its windows.

    Also raised when the rate state cannot be read (fail closed).
    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"
    category = "rate_limit"

    def __init__(self, retry_after: int = 60, window: Optional[str] = None):
        self.retry_after = max(1, int(retry_after))
        self.window = window
        super().__init__("Rate limit exceeded. Please try again later.")

    def to_response(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "code": self.code,
            "retryAfter": self.retry_after,
        }

    def response_headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class UpstreamFailureError(GatewayException):
    """Raised when the completion service or conversation store is unreachable.

    The gateway does not retry. Maps to HTTP 502 Bad Gateway by default.
    """
    status_code = 502
    code = "UPSTREAM_FAILURE"
    category = "upstream"

    def __init__(
        self,
        component: str,
        message: str = "Upstream service unavailable",
        status_code: Optional[int] = None,
    ):
        self.component = component
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class StreamFailureError(GatewayException):
    """Raised inside a relay once response headers are committed.

    Never reaches the exception handlers; it is surfaced to the client as
    an in-band terminal error event.
    """
    status_code = 500
    code = "STREAM_FAILURE"
    category = "stream"


class SinkClosedError(StreamFailureError):
    """Raised when writing to an output sink the client already closed."""
    code = "SINK_CLOSED"

    def __init__(self, message: str = "Client disconnected"):
        super().__init__(message)
