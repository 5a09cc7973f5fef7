"""Core module initialization."""

from .config_manager import ClientConfig, ConfigManager, ConnectionPolicy, RetryOptions
from .logging_config import setup_logging

__all__ = [
    "ClientConfig",
    "ConfigManager",
    "ConnectionPolicy",
    "RetryOptions",
    "setup_logging",
]
