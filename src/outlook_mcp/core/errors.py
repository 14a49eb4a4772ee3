"""Custom exception types for the Outlook MCP server.

Error messages follow the same standard everywhere:
- What failed (specific operation or component)
- Why it failed (the specific condition)
- How to fix it (actionable guidance)
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    """User-facing classification of a failed Graph API call."""

    AUTHENTICATION_EXPIRED = "authentication_expired"
    INSUFFICIENT_PERMISSIONS = "insufficient_permissions"
    RESOURCE_NOT_FOUND = "resource_not_found"
    THROTTLED = "throttled"
    SERVER_ERROR = "server_error"
    TRANSPORT_ERROR = "transport_error"
    RETRIES_EXHAUSTED = "retries_exhausted"
    VALIDATION_ERROR = "validation_error"
    UNKNOWN = "unknown"


class OutlookMCPError(Exception):
    """Base exception for all Outlook MCP errors."""

    pass


class ConfigValidationError(OutlookMCPError):
    """Raised when config.yaml fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class ConfigLoadError(OutlookMCPError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class AuthenticationError(OutlookMCPError):
    """Raised when the token provider cannot supply an access token."""

    pass


class TokenRefreshRequired(AuthenticationError):
    """Raised by a token provider when the cached token must be refreshed first.

    The Graph client handles this by forcing one refresh and asking for the
    token again.
    """

    pass


def utc_timestamp() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(UTC).isoformat()


class GraphAPIError(OutlookMCPError):
    """A classified Microsoft Graph failure.

    This is the single terminal error a caller receives for a failed logical
    request. It is never retried once produced.

    Attributes:
        kind: ErrorKind classification
        status_code: HTTP status code from the API (None for transport failures)
        error_code: Error code from the Graph error body (if available)
        correlation_id: client-request-id sent with the failing attempt
        timestamp: ISO-8601 UTC time the error was classified
        inner_error: Raw ``error`` object from the Graph response body
        request_id: Server-side ``request-id`` response header (if any)
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        status_code: int | None = None,
        error_code: str | None = None,
        correlation_id: str = "unknown",
        timestamp: str | None = None,
        inner_error: dict[str, Any] | None = None,
        request_id: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status_code = status_code
        self.error_code = error_code
        self.correlation_id = correlation_id
        self.timestamp = timestamp or utc_timestamp()
        self.inner_error = inner_error
        self.request_id = request_id

    def to_dict(self) -> dict[str, Any]:
        """Diagnostic representation used for logs and tool error results."""
        details: dict[str, Any] = {
            "kind": str(self.kind),
            "message": self.message,
            "status_code": self.status_code,
            "error_code": self.error_code,
            "correlation_id": self.correlation_id,
            "timestamp": self.timestamp,
        }
        if self.request_id:
            details["request_id"] = self.request_id
        if self.inner_error:
            details["inner_error"] = self.inner_error
        return details


class RequestValidationError(GraphAPIError):
    """Raised before dispatch when a request is malformed (e.g. batch over 20 items).

    Never enters the retry loop.
    """

    def __init__(self, message: str, correlation_id: str = "unknown"):
        super().__init__(
            message,
            kind=ErrorKind.VALIDATION_ERROR,
            correlation_id=correlation_id,
        )


class RetriesExhaustedError(OutlookMCPError):
    """Raised by the retry engine when every allowed attempt was throttled or failed.

    The Graph client classifies this into a GraphAPIError with kind
    ``retries_exhausted`` before it reaches the caller.

    Attributes:
        attempts: Number of attempts made
        last_response: The final retryable response (429 or 5xx)
    """

    def __init__(self, attempts: int, last_response: Any = None):
        super().__init__(f"Request failed after {attempts} attempts")
        self.attempts = attempts
        self.last_response = last_response
