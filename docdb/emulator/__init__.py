"""
Document Database Emulator.

In-memory emulation of the document service REST API, used to exercise the
client end to end without a live account.

Author: docdb Team
Date: 2025-12-13
"""

from .app import create_app
from .backend import EMULATOR_MASTER_KEY, DocumentDBBackend, MediaEntry, OperationResult
from .exceptions import (
    BadRequestError,
    ConflictError,
    EmulatorError,
    MethodNotAllowedError,
    NotFoundError,
    PreconditionFailedError,
    UnauthorizedError,
)
from .faults import FailurePattern, FaultConfig, FaultInjector
from .query import QueryError, execute_query, parse_query

__all__ = [
    # Application
    "create_app",
    # Backend
    "DocumentDBBackend",
    "EMULATOR_MASTER_KEY",
    "MediaEntry",
    "OperationResult",
    # Faults
    "FailurePattern",
    "FaultConfig",
    "FaultInjector",
    # Query
    "QueryError",
    "execute_query",
    "parse_query",
    # Exceptions
    "EmulatorError",
    "BadRequestError",
    "UnauthorizedError",
    "NotFoundError",
    "MethodNotAllowedError",
    "ConflictError",
    "PreconditionFailedError",
]
