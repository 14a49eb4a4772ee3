"""Classification of Graph API failures.

Raw failures come in several shapes (an error response, an httpx exception,
an exhausted retry loop). They are first normalized into FailureDetails and
then mapped by ``classify`` onto an ErrorKind with a remediation-oriented
message. ``classify`` is pure: it builds the error, it does not raise or log.
"""

from dataclasses import dataclass
from typing import Any

import httpx

from outlook_mcp.core.errors import ErrorKind, GraphAPIError, RetriesExhaustedError

CORRELATION_HEADER = "client-request-id"
REQUEST_ID_HEADER = "request-id"

INVALID_TOKEN_CODE = "InvalidAuthenticationToken"


@dataclass(frozen=True, slots=True)
class FailureDetails:
    """Transport-independent description of a failed call."""

    message: str
    status_code: int | None = None
    error_code: str | None = None
    correlation_id: str = "unknown"
    request_id: str | None = None
    inner_error: dict[str, Any] | None = None
    exhausted_attempts: int | None = None
    transport_failure: bool = False


def _correlation_from(request: httpx.Request | None) -> str:
    if request is None:
        return "unknown"
    return request.headers.get(CORRELATION_HEADER, "unknown")


def details_from_response(response: httpx.Response) -> FailureDetails:
    """Extract normalized fields from a Graph error response.

    Graph error bodies look like ``{"error": {"code": ..., "message": ...}}``;
    non-JSON bodies fall back to the raw text.
    """
    error_code: str | None = None
    inner_error: dict[str, Any] | None = None
    message = response.text or f"HTTP {response.status_code}"

    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        inner_error = payload["error"]
        error_code = inner_error.get("code")
        message = inner_error.get("message") or message

    # The server echoes client-request-id; prefer what was actually sent.
    try:
        correlation_id = _correlation_from(response.request)
    except RuntimeError:
        correlation_id = "unknown"
    if correlation_id == "unknown":
        correlation_id = response.headers.get(CORRELATION_HEADER, "unknown")

    return FailureDetails(
        message=message,
        status_code=response.status_code,
        error_code=error_code,
        correlation_id=correlation_id,
        request_id=response.headers.get(REQUEST_ID_HEADER),
        inner_error=inner_error,
    )


def details_from_exception(exc: BaseException) -> FailureDetails:
    """Extract normalized fields from an exception raised during a call."""
    if isinstance(exc, RetriesExhaustedError):
        base = (
            details_from_response(exc.last_response)
            if isinstance(exc.last_response, httpx.Response)
            else FailureDetails(message=str(exc))
        )
        return FailureDetails(
            message=str(exc),
            status_code=base.status_code,
            error_code=base.error_code,
            correlation_id=base.correlation_id,
            request_id=base.request_id,
            inner_error=base.inner_error,
            exhausted_attempts=exc.attempts,
        )

    if isinstance(exc, httpx.HTTPStatusError):
        return details_from_response(exc.response)

    correlation_id = "unknown"
    if isinstance(exc, httpx.RequestError):
        try:
            correlation_id = _correlation_from(exc.request)
        except RuntimeError:
            pass

    return FailureDetails(
        message=str(exc) or type(exc).__name__,
        correlation_id=correlation_id,
        transport_failure=isinstance(exc, httpx.TransportError),
    )


def classify(details: FailureDetails, timestamp: str | None = None) -> GraphAPIError:
    """Map a normalized failure onto a classified GraphAPIError.

    Args:
        details: Normalized failure fields
        timestamp: Classification time (defaults to now, UTC)

    Returns:
        GraphAPIError ready to be raised
    """
    kind = ErrorKind.UNKNOWN
    message = details.message

    if details.exhausted_attempts is not None:
        kind = ErrorKind.RETRIES_EXHAUSTED
        status = f" (last status {details.status_code})" if details.status_code else ""
        message = (
            f"Request failed after {details.exhausted_attempts} attempts{status}. "
            "Microsoft Graph kept throttling or failing; wait a moment and try again."
        )
    elif details.status_code == 401:
        kind = ErrorKind.AUTHENTICATION_EXPIRED
        message = "Authentication failed. Please re-authenticate."
    elif details.status_code == 403:
        kind = ErrorKind.INSUFFICIENT_PERMISSIONS
        message = "Insufficient permissions. Please check the scopes granted to the app."
    elif details.status_code == 404:
        kind = ErrorKind.RESOURCE_NOT_FOUND
        message = (
            "Resource not found. The mailbox, calendar or message does not exist "
            "or is not accessible; check the request path."
        )
    elif details.error_code == INVALID_TOKEN_CODE:
        kind = ErrorKind.AUTHENTICATION_EXPIRED
        message = "Invalid or expired token. Please re-authenticate."
    elif details.transport_failure:
        kind = ErrorKind.TRANSPORT_ERROR
        message = (
            f"Connection to Microsoft Graph failed: {details.message}. "
            "Check your network connection and try again."
        )

    return GraphAPIError(
        message,
        kind=kind,
        status_code=details.status_code,
        error_code=details.error_code,
        correlation_id=details.correlation_id,
        timestamp=timestamp,
        inner_error=details.inner_error,
        request_id=details.request_id,
    )
