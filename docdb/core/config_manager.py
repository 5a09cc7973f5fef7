"""
Configuration management for docdb.

Handles loading, validation, and access to client configuration settings.
"""

import os
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional
from enum import Enum

import yaml
from pydantic import BaseModel, Field, field_validator, ValidationError, ConfigDict

from docdb.links import AddressingMode
from docdb.models import MediaReadMode

logger = logging.getLogger(__name__)

_REDACTED = "***REDACTED***"


class LogLevel(str, Enum):
    """Valid log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class RetryOptions(BaseModel):
    """Bounded retry policy of the request executor."""
    max_throttle_retries: int = Field(default=9, ge=0, description="Retries after 429 responses")
    max_retries: int = Field(default=3, ge=0, description="Retries after 5xx or connection failures")
    initial_backoff: float = Field(default=0.5, ge=0.0, description="First backoff delay in seconds")
    max_backoff: float = Field(default=30.0, ge=0.0, description="Upper bound of a backoff delay")
    backoff_multiplier: float = Field(default=2.0, ge=1.0)

    def backoff(self, attempt: int) -> float:
        """Exponential delay before retry number ``attempt`` (1-based)."""
        return min(self.initial_backoff * (self.backoff_multiplier ** (attempt - 1)), self.max_backoff)


class ConnectionPolicy(BaseModel):
    """Transport-level behaviour of a client."""
    request_timeout: float = Field(
        default=60.0,
        gt=0.0,
        description="Seconds before a request fails with NetworkTimeout"
    )
    media_request_timeout: float = Field(default=300.0, gt=0.0)
    media_read_mode: MediaReadMode = MediaReadMode.BUFFERED
    addressing_mode: AddressingMode = AddressingMode.NAME_BASED
    retry_options: RetryOptions = Field(default_factory=RetryOptions)
    verify_ssl: bool = True


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: LogLevel = LogLevel.INFO
    format: str = "json"
    file: Optional[str] = None
    rotation_size: str = "10MB"
    rotation_count: int = 5
    module_levels: Optional[Dict[str, str]] = Field(
        default=None,
        description="Per-module log levels, e.g., {'docdb.executor': 'DEBUG'}"
    )


class ClientConfig(BaseModel):
    """Main docdb client configuration schema."""

    endpoint: str = Field(default="https://localhost:8081/", description="Service endpoint URL")

    master_key: Optional[str] = None

    resource_tokens: Dict[str, str] = Field(
        default_factory=dict,
        description="Resource id to resource token map"
    )

    connection_policy: ConnectionPolicy = Field(default_factory=ConnectionPolicy)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        """Validate endpoint format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("Endpoint must start with http:// or https://")
        return v if v.endswith("/") else v + "/"

    model_config = ConfigDict(use_enum_values=False)


class ConfigManager:
    """
    Manages docdb configuration loading and validation.

    Configuration precedence (highest to lowest):
    1. Explicit overrides
    2. Environment variables (DOCDB_*)
    3. Configuration file (YAML/JSON)
    4. Defaults
    """

    def __init__(self):
        self._config: Optional[ClientConfig] = None
        self._config_file: Optional[Path] = None

    def load(
        self,
        config_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None
    ) -> ClientConfig:
        """
        Load and validate configuration from multiple sources.

        Args:
            config_file: Path to configuration file (YAML or JSON)
            overrides: Dictionary of explicit overrides

        Returns:
            Validated ClientConfig instance

        Raises:
            ValidationError: If configuration is invalid
            FileNotFoundError: If specified config file doesn't exist
        """
        logger.info("Loading docdb configuration")

        config_dict: Dict[str, Any] = {}

        if config_file:
            config_dict = self._load_from_file(config_file)
            self._config_file = Path(config_file)
            logger.info(f"Loaded configuration from file: {config_file}")

        env_config = self._load_from_env()
        config_dict = self._merge_configs(config_dict, env_config)
        if env_config:
            logger.info(f"Applied {len(env_config)} environment variable overrides")

        if overrides:
            config_dict = self._merge_configs(config_dict, overrides)
            logger.info(f"Applied {len(overrides)} explicit overrides")

        try:
            self._config = ClientConfig(**config_dict)
            logger.info("Configuration validated successfully")
            self._log_configuration()
            return self._config
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise

    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file."""
        path = Path(file_path)

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        with open(path, 'r') as f:
            if path.suffix in ['.yaml', '.yml']:
                return yaml.safe_load(f) or {}
            elif path.suffix == '.json':
                return json.load(f)
            else:
                raise ValueError(f"Unsupported config file format: {path.suffix}")

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        config: Dict[str, Any] = {}

        if endpoint := os.getenv("DOCDB_ENDPOINT"):
            config["endpoint"] = endpoint
        if master_key := os.getenv("DOCDB_MASTER_KEY"):
            config["master_key"] = master_key

        if timeout := os.getenv("DOCDB_REQUEST_TIMEOUT"):
            config.setdefault("connection_policy", {})["request_timeout"] = float(timeout)
        if mode := os.getenv("DOCDB_ADDRESSING_MODE"):
            config.setdefault("connection_policy", {})["addressing_mode"] = mode.lower()
        if verify := os.getenv("DOCDB_VERIFY_SSL"):
            config.setdefault("connection_policy", {})["verify_ssl"] = verify.lower() in ['true', '1', 'yes']

        if log_level := os.getenv("DOCDB_LOG_LEVEL"):
            config.setdefault("logging", {})["level"] = log_level.upper()
        if log_file := os.getenv("DOCDB_LOG_FILE"):
            config.setdefault("logging", {})["file"] = log_file

        return config

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two configuration dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _log_configuration(self) -> None:
        """Log the loaded configuration (with credentials redacted)."""
        if not self._config:
            return

        config_dict = self._config.model_dump(mode="json")

        if config_dict.get("master_key"):
            config_dict["master_key"] = _REDACTED
        if config_dict.get("resource_tokens"):
            config_dict["resource_tokens"] = {rid: _REDACTED for rid in config_dict["resource_tokens"]}

        logger.info(f"Active configuration: {json.dumps(config_dict, indent=2)}")

    def get_config(self) -> ClientConfig:
        """
        Get the loaded configuration.

        Returns:
            ClientConfig instance

        Raises:
            RuntimeError: If configuration hasn't been loaded
        """
        if self._config is None:
            raise RuntimeError("Configuration not loaded. Call load() first.")
        return self._config

    def reload(self) -> ClientConfig:
        """
        Reload configuration from the same sources.

        Returns:
            Reloaded ClientConfig instance
        """
        config_file = str(self._config_file) if self._config_file else None
        return self.load(config_file=config_file)
