"""
docdb: Document Database Client

An asynchronous client for a hierarchical document database service, with an
in-memory emulator for offline development and testing.
"""

__version__ = "0.1.0"

from .client import DocumentClient
from .core.config_manager import ClientConfig, ConfigManager, ConnectionPolicy, RetryOptions
from .exceptions import (
    BadRequest,
    ClientError,
    Conflict,
    DocumentDBError,
    NetworkTimeout,
    NotFound,
    ServiceUnavailable,
    Throttled,
    Unauthorized,
    ValidationError,
)
from .links import AddressingMode, ResourceIdentity, ResourceKind, ResourceLink, parse_link, resolve
from .models import FeedOptions, MediaOptions, MediaReadMode, QuerySpec, RequestOptions
from .query_iterator import IteratorState, QueryIterator

__all__ = [
    "__version__",
    "DocumentClient",
    # Configuration
    "ClientConfig",
    "ConfigManager",
    "ConnectionPolicy",
    "RetryOptions",
    # Addressing
    "AddressingMode",
    "ResourceIdentity",
    "ResourceKind",
    "ResourceLink",
    "parse_link",
    "resolve",
    # Options
    "FeedOptions",
    "MediaOptions",
    "MediaReadMode",
    "QuerySpec",
    "RequestOptions",
    # Iteration
    "IteratorState",
    "QueryIterator",
    # Errors
    "DocumentDBError",
    "ValidationError",
    "ClientError",
    "BadRequest",
    "Unauthorized",
    "NotFound",
    "Conflict",
    "Throttled",
    "ServiceUnavailable",
    "NetworkTimeout",
]
