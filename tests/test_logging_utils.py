"""Tests for structured logging helpers."""

import json
import logging

from tildeplayer_storage.logging_utils import (
    StorageLoggerAdapter,
    StructuredJsonFormatter,
    configure_structured_logging,
    get_storage_logger,
    redact,
)


def make_record(msg: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("tildeplayer_storage.sync", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredJsonFormatter:
    """Tests for StructuredJsonFormatter."""

    def test_basic_fields(self) -> None:
        out = json.loads(StructuredJsonFormatter().format(make_record()))

        assert out["level"] == "INFO"
        assert out["logger"] == "tildeplayer_storage.sync"
        assert out["message"] == "hello"
        assert "timestamp" in out

    def test_extra_fields(self) -> None:
        """Test that context passed via extra is emitted, stringifying non-JSON values."""
        out = json.loads(
            StructuredJsonFormatter().format(make_record(document_id="g1", obj=object()))
        )
        assert out["document_id"] == "g1"
        assert isinstance(out["obj"], str)


class TestLoggerHelpers:
    """Tests for logger factories."""

    def test_storage_logger_name(self) -> None:
        assert get_storage_logger("gist").name == "tildeplayer_storage.gist"

    def test_configure_replaces_handlers(self) -> None:
        logger = configure_structured_logging(logging.DEBUG, logger_name="tildeplayer_storage.test")
        configure_structured_logging(logging.DEBUG, logger_name="tildeplayer_storage.test")

        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, StructuredJsonFormatter)
        logger.handlers.clear()

    def test_adapter_adds_context(self) -> None:
        adapter = StorageLoggerAdapter(get_storage_logger("gist"), {"document_id": "g1"})
        _, kwargs = adapter.process("msg", {})
        assert kwargs["extra"] == {"document_id": "g1"}


class TestRedaction:
    """Tests that GitHub credentials never reach log output."""

    def test_secret_extra_masked(self) -> None:
        out = json.loads(
            StructuredJsonFormatter().format(make_record(token="ghp_abc123", document_id="g1"))
        )
        assert out["token"] == "***"
        assert out["document_id"] == "g1"

    def test_authorization_header_in_message_masked(self) -> None:
        record = make_record("request failed with headers {'Authorization': 'token tok-secret'}")
        out = json.loads(StructuredJsonFormatter().format(record))

        assert "tok-secret" not in out["message"]
        assert "token ***" in out["message"]

    def test_bare_github_token_masked(self) -> None:
        assert redact("using ghp_AbC123xyz for gist g1") == "using *** for gist g1"

    def test_plain_text_untouched(self) -> None:
        assert redact("saved 3 tracks to gist g1") == "saved 3 tracks to gist g1"

    def test_adapter_keeps_call_extra(self) -> None:
        adapter = StorageLoggerAdapter(get_storage_logger("gist"), {"document_id": "g1"})
        _, kwargs = adapter.process("msg", {"extra": {"status": 500}})
        assert kwargs["extra"] == {"status": 500, "document_id": "g1"}

    def test_token_word_in_prose_untouched(self) -> None:
        assert redact("No token configured; remote disabled") == "No token configured; remote disabled"
