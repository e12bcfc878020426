"""
Unit tests for logging configuration
"""
import json
import logging
import pytest
from io import StringIO

from lightbridge.core.logging_config import (
    setup_logging,
    get_logger,
    new_correlation_id,
    set_correlation_id,
    get_correlation_id,
    clear_correlation_id,
    sanitize_log_value,
    CustomJsonFormatter,
    CorrelationIdFilter,
    SanitizingFilter,
    NOISY_LOGGERS,
)


def _record(msg, args=None):
    return logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=args,
        exc_info=None,
    )


class TestCorrelationIdContext:
    """Test correlation ID context variable functionality"""

    def test_set_and_get_correlation_id(self):
        token = set_correlation_id("abc123")

        assert get_correlation_id() == "abc123"

        clear_correlation_id(token)

    def test_clear_restores_previous_value(self):
        outer = set_correlation_id("outer")
        inner = set_correlation_id("inner")
        assert get_correlation_id() == "inner"

        clear_correlation_id(inner)
        assert get_correlation_id() == "outer"

        clear_correlation_id(outer)

    def test_new_correlation_id_is_unique(self):
        token1 = new_correlation_id()
        first = get_correlation_id()
        clear_correlation_id(token1)

        token2 = new_correlation_id()
        second = get_correlation_id()
        clear_correlation_id(token2)

        assert first and second
        assert first != second


class TestCorrelationIdFilter:

    def test_filter_adds_placeholder_without_context(self):
        token = set_correlation_id(None)
        record = _record("hello")

        assert CorrelationIdFilter().filter(record) is True
        assert record.correlation_id == "-"

        clear_correlation_id(token)

    def test_filter_adds_current_id(self):
        token = set_correlation_id("msg-42")
        record = _record("hello")

        CorrelationIdFilter().filter(record)
        assert record.correlation_id == "msg-42"

        clear_correlation_id(token)


class TestSanitizing:
    """Log injection protection for payloads coming off the wire"""

    def test_filter_strips_newlines_from_message(self):
        record = _record("line1\nFAKE ENTRY\r\nline3")

        SanitizingFilter().filter(record)

        assert "\n" not in record.msg
        assert "\r" not in record.msg

    def test_filter_strips_newlines_from_args(self):
        record = _record("payload %s", ("ON\nOFF",))

        SanitizingFilter().filter(record)

        assert record.args == ("ON OFF",)

    def test_sanitize_log_value_truncates_long_values(self):
        result = sanitize_log_value("x" * 5000)

        assert result.endswith("...[truncated]")
        assert len(result) < 2100

    def test_sanitize_log_value_converts_non_strings(self):
        assert sanitize_log_value(42) == "42"


class TestJsonFormatter:

    def test_output_is_json_with_standard_fields(self):
        stream = StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(CustomJsonFormatter('%(timestamp)s %(level)s %(name)s %(message)s'))
        handler.addFilter(CorrelationIdFilter())

        logger = logging.getLogger("lightbridge.test.json")
        logger.propagate = False
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)

        token = set_correlation_id("corr-1")
        try:
            logger.info("Mirror updated", extra={"event_type": "mirror_updated", "channel": "hue"})
        finally:
            clear_correlation_id(token)
            logger.removeHandler(handler)

        entry = json.loads(stream.getvalue().strip())
        assert entry["message"] == "Mirror updated"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "lightbridge.test.json"
        assert entry["correlation_id"] == "corr-1"
        assert entry["event_type"] == "mirror_updated"
        assert entry["channel"] == "hue"
        assert "timestamp" in entry


class TestSetupLogging:

    @pytest.fixture
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers = list(root.handlers)
        level = root.level
        yield
        for handler in root.handlers:
            handler.close()
        root.handlers = handlers
        root.setLevel(level)

    def test_setup_creates_log_files_and_handlers(self, tmp_path, restore_root_logger):
        root = setup_logging(log_level="DEBUG", log_dir=str(tmp_path), app_version="9.9.9")

        assert root.level == logging.DEBUG
        assert len(root.handlers) == 3
        get_logger("lightbridge.test").error("boom")

        assert (tmp_path / "lightbridge.log").exists()
        assert (tmp_path / "error.log").exists()

    def test_noisy_loggers_capped_at_warning(self, tmp_path, restore_root_logger):
        setup_logging(log_level="DEBUG", log_dir=str(tmp_path))

        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING
