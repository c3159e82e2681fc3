"""Tests for logging configuration module.

Verifies that logging configuration:
1. Drops credential fields (BLOCKED_FIELDS)
2. Reduces URLs to paths and redacts path tokens
3. Never logs request or response payloads
4. Produces valid JSON output
"""

from __future__ import annotations

import io
import json
import logging

import pytest

from restgovernor.logging_config import (
    BLOCKED_FIELDS,
    JsonFormatter,
    SimpleFormatter,
    _filter_log_record,
    _normalize_url,
    _sanitize_text,
    get_logger,
    setup_logging,
)


def _record(msg: str = "test", level: int = logging.INFO, name: str = "test") -> logging.LogRecord:
    return logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=None,
    )


class TestBlockedFields:
    """Test that sensitive fields are properly blocked."""

    def test_blocked_fields_cover_credentials(self) -> None:
        assert "token" in BLOCKED_FIELDS
        assert "authorization" in BLOCKED_FIELDS
        assert "x-audit-log-reason" in BLOCKED_FIELDS

    def test_filter_removes_partial_matches(self) -> None:
        """Fields containing blocked words should be removed."""
        record = {
            "webhook_token": "value",
            "Authorization": "Bot abc",
            "client_secret": "value",
            "bucket_key": "keep",
        }
        filtered = _filter_log_record(record)
        assert filtered == {"bucket_key": "keep"}

    def test_nested_dict_filtered(self) -> None:
        record = {"request": {"interaction_token": "x", "retry_after_ms": 100}}
        filtered = _filter_log_record(record)
        assert filtered["request"] == {"retry_after_ms": 100}


class TestSanitizeText:
    """Tests for _sanitize_text function."""

    def test_url_reduced_to_path(self) -> None:
        result = _sanitize_text("Request to https://discord.com/api/v10/channels/1/messages?limit=50")
        assert result == "Request to /api/v10/channels/1/messages"

    def test_webhook_token_in_url_redacted(self) -> None:
        result = _sanitize_text("POST https://discord.com/api/v10/webhooks/123/abc-DEF_ghi failed")
        assert "abc-DEF_ghi" not in result
        assert "/webhooks/123/[TOKEN]" in result

    def test_interaction_token_in_path_redacted(self) -> None:
        result = _sanitize_text("callback /interactions/55/aW50ZXJhY3Rpb24/callback")
        assert result == "callback /interactions/55/[TOKEN]/callback"

    def test_bot_token_redacted(self) -> None:
        result = _sanitize_text("using Bot MTIzNDU2Nzg5MDEyMzQ1Njc4.GaBcDe.abcdefghijklmnop")
        assert "MTIzNDU2Nzg5MDEyMzQ1Njc4" not in result
        assert "[TOKEN]" in result

    def test_authorization_header_redacted(self) -> None:
        result = _sanitize_text("header Authorization: Bot secret.value")
        assert "secret.value" not in result
        assert "[AUTH]" in result

    def test_email_redacted(self) -> None:
        result = _sanitize_text("User user@example.com logged in")
        assert "user@example.com" not in result
        assert "[EMAIL]" in result

    def test_bucket_key_unchanged(self) -> None:
        """Bucket keys carry placeholders, never token values."""
        text = "POST:/webhooks/5/{webhook_token}#token"
        assert _sanitize_text(text) == text

    def test_empty_string_unchanged(self) -> None:
        assert _sanitize_text("") == ""


class TestHighCardinalityFields:
    """Test normalization of high-cardinality fields."""

    def test_url_normalized_to_endpoint(self) -> None:
        """URL field should be normalized to endpoint (path only)."""
        filtered = _filter_log_record({"url": "https://discord.com/api/v10/gateway/bot?x=1"})
        assert "url" not in filtered
        assert filtered["endpoint"] == "/api/v10/gateway/bot"

    def test_normalize_url_redacts_token(self) -> None:
        assert _normalize_url("https://discord.com/api/v10/webhooks/1/tok") == "/api/v10/webhooks/1/[TOKEN]"

    @pytest.mark.parametrize(
        ("field", "replacement"),
        [("body", "[BODY]"), ("payload", "[PAYLOAD]"), ("params", "[PARAMS]"), ("headers", "[HEADERS]")],
    )
    def test_payload_fields_redacted(self, field: str, replacement: str) -> None:
        filtered = _filter_log_record({field: {"content": "hello"}})
        assert filtered[field] == replacement

    def test_list_capped_at_10(self) -> None:
        filtered = _filter_log_record({"items": list(range(15))})
        assert filtered["items"] == "[list:15 items]"


class TestJsonFormatter:
    """Test the JSON log formatter."""

    def test_contains_required_fields(self) -> None:
        parsed = json.loads(JsonFormatter().format(_record("hello world", name="mylogger")))
        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "mylogger"
        assert parsed["msg"] == "hello world"
        assert "ts" in parsed

    def test_warning_includes_location(self) -> None:
        """WARNING+ logs should include file/line info."""
        parsed = json.loads(JsonFormatter().format(_record(level=logging.WARNING)))
        assert parsed["file"] == "test.py"
        assert parsed["line"] == 42

    def test_extra_fields_filtered(self) -> None:
        record = _record("Rate limit hit")
        record.bucket_key = "POST:/channels/1/messages"
        record.retry_after_ms = 1500
        record.webhook_token = "secret"
        parsed = json.loads(JsonFormatter().format(record))
        assert parsed["bucket_key"] == "POST:/channels/1/messages"
        assert parsed["retry_after_ms"] == 1500
        assert "webhook_token" not in parsed


class TestSimpleFormatter:
    """Test the simple human-readable formatter."""

    def test_extra_fields_appended(self) -> None:
        record = _record("Bucket exhausted, waiting for reset")
        record.wait_ms = 300
        output = SimpleFormatter().format(record)
        assert output.startswith("INFO     test: Bucket exhausted")
        assert "wait_ms=300" in output


class TestSetupLogging:
    """Test the setup_logging function."""

    def test_setup_logging_json(self) -> None:
        stream = io.StringIO()
        setup_logging(json_format=True, stream=stream)

        get_logger("test_json").info("test message", extra={"bucket_key": "GET:/gateway/bot"})

        parsed = json.loads(stream.getvalue().strip())
        assert parsed["msg"] == "test message"
        assert parsed["bucket_key"] == "GET:/gateway/bot"

    def test_setup_logging_level(self) -> None:
        stream = io.StringIO()
        setup_logging(level=logging.WARNING, json_format=False, stream=stream)

        logger = get_logger("test_level")
        logger.info("info message")
        logger.warning("warning message")

        output = stream.getvalue()
        assert "info message" not in output
        assert "warning message" in output
