"""
Document Database Exception Hierarchy.

Every failure surfaced by the client is classified exactly once, either
locally (``ValidationError``) or at the request executor boundary, and is
passed through unchanged by everything above it.

Author: docdb Team
Date: 2025-12-11
"""

from typing import Any, Dict, Mapping, Optional, Type


class DocumentDBError(Exception):
    """
    Base exception for all client errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g. 'NotFound')
        status_code: HTTP status code, ``None`` for purely local failures
        headers: Response headers of the failing round trip, if any
        is_transient: Whether repeating the operation may succeed
    """

    error_code: str = "DocumentDBError"
    status_code: Optional[int] = None
    is_transient: bool = False

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        headers: Optional[Mapping[str, str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.error_code
        if status_code is not None:
            self.status_code = status_code
        self.headers: Dict[str, str] = dict(headers or {})

    @property
    def code(self) -> Optional[int]:
        """Numeric status code (alias kept for symmetry with ``ClientError``)."""
        return self.status_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for structured output."""
        return {
            "error": {
                "code": self.error_code,
                "status": self.status_code,
                "message": self.message,
            }
        }


# ========== Local Errors ==========

class ValidationError(DocumentDBError):
    """Raised for malformed ids or unresolvable links. Never reaches the network."""
    error_code = "ValidationError"


# ========== Client (4xx) Errors ==========

class ClientError(DocumentDBError):
    """
    A 4xx response: a logical mistake in the request, never retried.

    ``code`` is the stable numeric status code (400, 401, 404, 409, ...).
    """
    error_code = "ClientError"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        headers: Optional[Mapping[str, str]] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message, error_code=error_code, status_code=status_code, headers=headers)


class BadRequest(ClientError):
    """Malformed body, malformed id or illegal mutation."""
    error_code = "BadRequest"
    status_code = 400


class Unauthorized(ClientError):
    """Missing, invalid or insufficient credential."""
    error_code = "Unauthorized"
    status_code = 401


class NotFound(ClientError):
    """Resource or one of its ancestors does not exist."""
    error_code = "NotFound"
    status_code = 404


class Conflict(ClientError):
    """Id collision among siblings."""
    error_code = "Conflict"
    status_code = 409


# ========== Retried Errors ==========

class Throttled(DocumentDBError):
    """Request rate too large; surfaced once throttle retries are exhausted."""
    error_code = "TooManyRequests"
    status_code = 429
    is_transient = True

    def __init__(
        self,
        message: str = "Request rate is large",
        retry_after_ms: Optional[int] = None,
        attempts: int = 0,
        headers: Optional[Mapping[str, str]] = None,
    ):
        super().__init__(message, headers=headers)
        self.retry_after_ms = retry_after_ms
        self.attempts = attempts


class ServiceUnavailable(DocumentDBError):
    """5xx response or connection failure; surfaced once retries are exhausted."""
    error_code = "ServiceUnavailable"
    status_code = 503
    is_transient = True

    def __init__(
        self,
        message: str = "Service unavailable",
        status_code: Optional[int] = None,
        attempts: int = 0,
        headers: Optional[Mapping[str, str]] = None,
    ):
        super().__init__(message, status_code=status_code, headers=headers)
        self.attempts = attempts


class NetworkTimeout(DocumentDBError):
    """The request did not complete within the configured timeout. Never retried."""
    error_code = "RequestTimeout"
    is_transient = True

    def __init__(self, operation: str, timeout_seconds: float):
        super().__init__(f"Request '{operation}' timed out after {timeout_seconds}s")
        self.operation = operation
        self.timeout_seconds = timeout_seconds


_CLIENT_ERRORS: Dict[int, Type[ClientError]] = {
    400: BadRequest,
    401: Unauthorized,
    404: NotFound,
    409: Conflict,
}


def client_error_for_status(
    status_code: int,
    message: str,
    headers: Optional[Mapping[str, str]] = None,
) -> ClientError:
    """
    Build the typed ``ClientError`` for a 4xx status code.

    Args:
        status_code: HTTP status code in the 4xx range
        message: Error message from the response body
        headers: Response headers

    Returns:
        A ``BadRequest``/``Unauthorized``/``NotFound``/``Conflict`` instance,
        or a plain ``ClientError`` carrying the code for other 4xx statuses
    """
    error_class = _CLIENT_ERRORS.get(status_code)
    if error_class is None:
        return ClientError(message, status_code=status_code, headers=headers)
    return error_class(message, headers=headers)


def is_transient_error(error: Exception) -> bool:
    """
    Determine if an error is transient and can be retried by the caller.

    Args:
        error: Exception to check

    Returns:
        True if the operation may succeed when repeated
    """
    if isinstance(error, DocumentDBError):
        return error.is_transient
    return False
