"""
Logging infrastructure for docdb.

Structured JSON or text output with credential redaction. Every request the
executor runs gets a correlation id; records logged while it runs carry that
id plus the request fields the executor attaches (operation, attempt,
status code).
"""

import logging
import logging.handlers
import json
import sys
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional
from contextvars import ContextVar

# One per executed request
correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)

# Extra attributes the executor sets on its records
REQUEST_FIELDS = ("operation", "attempt", "status_code", "retry_in")

# Transport libraries log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore")


class SensitiveDataFilter(logging.Filter):
    """Redacts master keys, signatures and resource tokens."""

    PATTERNS = [
        (re.compile(r'(authorization["\']?\s*[:=]\s*["\']?)[^\s"\',}]+', re.IGNORECASE), r'\1***REDACTED***'),
        (re.compile(r'(type(?:=|%3D)(?:master|resource)(?:&|%26)ver(?:=|%3D)[\d.]+(?:&|%26)sig(?:=|%3D))[^\s"\',&}]+', re.IGNORECASE), r'\1***REDACTED***'),
        (re.compile(r'(master_?key["\']?\s*[:=]\s*["\']?)[^\s"\',}]+', re.IGNORECASE), r'\1***REDACTED***'),
        (re.compile(r'(_token["\']?\s*[:=]\s*["\']?)[^\s"\',}]+', re.IGNORECASE), r'\1***REDACTED***'),
        (re.compile(r'(AccountKey=)[^;]+', re.IGNORECASE), r'\1***REDACTED***'),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            for pattern, replacement in self.PATTERNS:
                record.msg = pattern.sub(replacement, record.msg)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with request fields when present."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
        }

        if corr_id := correlation_id.get():
            log_data["correlation_id"] = corr_id

        request = {name: getattr(record, name) for name in REQUEST_FIELDS if hasattr(record, name)}
        if request:
            log_data["request"] = request

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter."""

    def __init__(self):
        fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        super().__init__(fmt=fmt, datefmt="%Y-%m-%d %H:%M:%S")


def setup_logging(
    level: str = "INFO",
    format_type: str = "json",
    log_file: Optional[str] = None,
    rotation_size: str = "10MB",
    rotation_count: int = 5,
    module_levels: Optional[Dict[str, str]] = None
) -> None:
    """
    Configure docdb logging.

    Args:
        level: Default log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: Log format ("json" or "text")
        log_file: Optional file path for log output
        rotation_size: Size limit for log rotation (e.g., "10MB")
        rotation_count: Number of rotated log files to keep
        module_levels: Optional dict of module-specific log levels,
                      e.g. {"docdb.executor": "DEBUG"}; also overrides the
                      WARNING level given to httpx and httpcore
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    root_logger.handlers.clear()

    if format_type == "json":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = TextFormatter()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(SensitiveDataFilter())
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_file,
            maxBytes=_parse_size(rotation_size),
            backupCount=rotation_count,
            encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(SensitiveDataFilter())
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to file: {log_file} (rotation: {rotation_size}, count: {rotation_count})")

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if module_levels:
        for module_name, module_level in module_levels.items():
            logging.getLogger(module_name).setLevel(getattr(logging, module_level.upper()))
            root_logger.info(f"Module '{module_name}' log level set to {module_level}")

    root_logger.info(f"Logging configured: level={level}, format={format_type}")


def _parse_size(size_str: str) -> int:
    """Parse a size such as "10MB" or "512KB" to bytes."""
    size_str = size_str.upper().strip()

    # Longest suffix first: 'B' also ends 'MB'
    multipliers = [
        ('GB', 1024 ** 3),
        ('MB', 1024 ** 2),
        ('KB', 1024),
        ('B', 1),
    ]

    for suffix, multiplier in multipliers:
        if size_str.endswith(suffix):
            number = size_str[:-len(suffix)].strip()
            return int(float(number) * multiplier)

    return int(size_str)


def new_correlation_id() -> str:
    """Start a correlation id for the current request context and return it."""
    corr_id = str(uuid.uuid4())
    correlation_id.set(corr_id)
    return corr_id


def request_fields(operation: str, attempt: Optional[int] = None, **fields: Any) -> Dict[str, Any]:
    """``extra`` mapping for a log call about ``operation``."""
    extra: Dict[str, Any] = {"operation": operation}
    if attempt is not None:
        extra["attempt"] = attempt
    extra.update((k, v) for k, v in fields.items() if k in REQUEST_FIELDS and v is not None)
    return extra
