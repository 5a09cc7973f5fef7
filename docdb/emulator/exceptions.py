"""
Emulator Exceptions.

Errors raised by the emulator backend, each carrying the status code and
error code the service answers with.

Author: docdb Team
Date: 2025-12-13
"""

from typing import Any, Dict


class EmulatorError(Exception):
    """Base exception for emulator errors.

    Attributes:
        message: Error message
        error_code: Service error code
        status_code: HTTP status code of the response
    """

    status_code = 500

    def __init__(self, message: str, error_code: str = "InternalServerError"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code

    def to_dict(self) -> Dict[str, Any]:
        """Response body of the error."""
        return {"code": self.error_code, "message": self.message}


class BadRequestError(EmulatorError):
    """Malformed request, id, body or query."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message, "BadRequest")


class UnauthorizedError(EmulatorError):
    """Missing, invalid or insufficient credential."""

    status_code = 401

    def __init__(self, message: str):
        super().__init__(message, "Unauthorized")


class NotFoundError(EmulatorError):
    """Resource or one of its ancestors does not exist."""

    status_code = 404

    def __init__(self, message: str = "Resource Not Found"):
        super().__init__(message, "NotFound")


class MethodNotAllowedError(EmulatorError):
    """The verb is not supported on the target."""

    status_code = 405

    def __init__(self, message: str):
        super().__init__(message, "MethodNotAllowed")


class ConflictError(EmulatorError):
    """A sibling with the same id already exists."""

    status_code = 409

    def __init__(self, message: str = "Resource with specified id or name already exists."):
        super().__init__(message, "Conflict")


class PreconditionFailedError(EmulatorError):
    """The ``if-match`` ETag no longer matches."""

    status_code = 412

    def __init__(self, message: str):
        super().__init__(message, "PreconditionFailed")
