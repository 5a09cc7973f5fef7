"""
Tests for logging infrastructure.
"""

import asyncio
import json
import logging
import sys

import pytest

from docdb.core.logging_config import (
    JSONFormatter,
    SensitiveDataFilter,
    _parse_size,
    correlation_id,
    new_correlation_id,
    request_fields,
    setup_logging,
)


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    for name in ("httpx", "httpcore", "docdb.executor"):
        logging.getLogger(name).setLevel(logging.NOTSET)
    correlation_id.set(None)


def _record(msg, level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="docdb.test", level=level, pathname="test.py", lineno=1,
        msg=msg, args=(), exc_info=exc_info,
    )


class TestLoggingSetup:
    """Test suite for logging setup."""

    def test_setup_logging_defaults(self):
        """Test setting up logging with defaults."""
        setup_logging()

        root_logger = logging.getLogger()
        assert root_logger.level == logging.INFO
        assert len(root_logger.handlers) == 1
        assert isinstance(root_logger.handlers[0].formatter, JSONFormatter)

    def test_setup_logging_with_level(self):
        setup_logging(level="debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_setup_logging_text_format(self):
        setup_logging(format_type="text")
        assert not isinstance(logging.getLogger().handlers[0].formatter, JSONFormatter)

    def test_setup_logging_with_file(self, tmp_path):
        """Test logging to a rotating file."""
        log_file = tmp_path / "logs" / "docdb.log"
        setup_logging(log_file=str(log_file))

        logging.getLogger("docdb.test").info("written to file")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert log_file.exists()
        assert "written to file" in log_file.read_text()

    def test_setup_logging_with_module_levels(self):
        setup_logging(level="INFO", module_levels={"docdb.executor": "DEBUG"})
        assert logging.getLogger("docdb.executor").level == logging.DEBUG

    def test_quiets_transport_loggers(self):
        setup_logging(level="DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING

    def test_module_levels_override_transport_loggers(self):
        setup_logging(module_levels={"httpx": "DEBUG"})
        assert logging.getLogger("httpx").level == logging.DEBUG


class TestJSONFormatter:
    """Test suite for JSON formatter."""

    def test_format_basic_message(self):
        data = json.loads(JSONFormatter().format(_record("Fetched 2 items")))

        assert data["level"] == "INFO"
        assert data["module"] == "docdb.test"
        assert data["message"] == "Fetched 2 items"
        assert "timestamp" in data
        assert "correlation_id" not in data

    def test_format_with_correlation_id(self):
        correlation_id.set("corr-123")
        data = json.loads(JSONFormatter().format(_record("Sending GET /dbs")))
        assert data["correlation_id"] == "corr-123"

    def test_format_with_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record("failed", level=logging.ERROR, exc_info=sys.exc_info())

        data = json.loads(JSONFormatter().format(record))
        assert "ValueError: boom" in data["exception"]

    def test_format_with_request_fields(self):
        record = _record("retrying")
        for name, value in request_fields("GET /dbs/db1", 2, status_code=503, retry_in=0.5).items():
            setattr(record, name, value)

        data = json.loads(JSONFormatter().format(record))

        assert data["request"] == {"operation": "GET /dbs/db1", "attempt": 2, "status_code": 503, "retry_in": 0.5}

    def test_request_fields_drop_unknown_and_empty(self):
        assert request_fields("POST /dbs", status_code=None, user="x") == {"operation": "POST /dbs"}


class TestSensitiveDataFilter:
    """Test suite for credential redaction."""

    @pytest.mark.parametrize("message, secret", [
        ("authorization: type%3Dmaster%26ver%3D1.0%26sig%3Dabc123", "abc123"),
        ("header type=resource&ver=1.0&sig=xyz789 sent", "xyz789"),
        ("master_key=c2VjcmV0", "c2VjcmV0"),
        ('{"masterKey": "c2VjcmV0"}', "c2VjcmV0"),
        ("_token: type-resource-secret", "type-resource-secret"),
        ("AccountKey=c2VjcmV0;EndpointSuffix=x", "c2VjcmV0"),
    ])
    def test_redacts(self, message, secret):
        record = _record(message)
        assert SensitiveDataFilter().filter(record) is True
        assert secret not in record.msg
        assert "***REDACTED***" in record.msg

    def test_leaves_plain_messages(self):
        record = _record("Created Document 'doc1'")
        SensitiveDataFilter().filter(record)
        assert record.msg == "Created Document 'doc1'"


class TestCorrelationId:
    """Test suite for correlation ids."""

    def test_new_correlation_id(self):
        first = new_correlation_id()
        second = new_correlation_id()
        assert first != second
        assert correlation_id.get() == second

    @pytest.mark.asyncio
    async def test_isolated_per_task(self):
        async def run():
            return new_correlation_id(), correlation_id.get()

        (a, seen_a), (b, seen_b) = await asyncio.gather(run(), run())
        assert a == seen_a
        assert b == seen_b
        assert a != b


class TestParseSize:
    """Test suite for rotation size parsing."""

    @pytest.mark.parametrize("text, expected", [
        ("100B", 100),
        ("10KB", 10 * 1024),
        ("10MB", 10 * 1024 ** 2),
        ("1GB", 1024 ** 3),
        ("10mb", 10 * 1024 ** 2),
        (" 5 MB ", 5 * 1024 ** 2),
        ("1.5KB", 1536),
        ("2048", 2048),
    ])
    def test_parse(self, text, expected):
        assert _parse_size(text) == expected
