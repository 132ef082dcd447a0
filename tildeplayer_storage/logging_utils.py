"""
Logging helpers for the track storage engine.

Every component logs under ``tildeplayer_storage.<component>``. Remote
calls carry the gist id of the collection document they touch, and
GitHub tokens never reach a log line in clear text.
"""

import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any

_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "taskName", "message",
}

# Context keys whose values are credentials
SECRET_KEYS = frozenset({"token", "authorization", "access_token", "github_token"})

REDACTED = "***"

_AUTH_HEADER_PATTERN = re.compile(
    r"""(authorization['"]?\s*[:=]\s*['"]?(?:token|bearer)\s+)[^\s'"]+""", re.IGNORECASE
)
_GITHUB_TOKEN_PATTERN = re.compile(r"\b(?:ghp|gho|ghu|ghs|ghr|github_pat)_[A-Za-z0-9_]+")


def redact(text: str) -> str:
    """Mask GitHub tokens and ``Authorization`` header values in ``text``."""
    text = _AUTH_HEADER_PATTERN.sub(lambda m: m.group(1) + REDACTED, text)
    return _GITHUB_TOKEN_PATTERN.sub(REDACTED, text)


class StructuredJsonFormatter(logging.Formatter):
    """
    One JSON object per line for storage log records.

    Fields: ``timestamp`` (UTC ISO 8601), ``level``, ``logger``, ``message``,
    plus whatever context the caller passed in ``extra`` (``document_id``,
    ``key``, ``status``). Values under credential keys are replaced with
    ``***`` and tokens embedded in the message are masked.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact(record.getMessage()),
        }

        if record.exc_info:
            log_obj["exception"] = redact(self.formatException(record.exc_info))

        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            if key.lower() in SECRET_KEYS:
                log_obj[key] = REDACTED
                continue
            try:
                json.dumps(value)
                log_obj[key] = value
            except (TypeError, ValueError):
                log_obj[key] = redact(str(value))

        return json.dumps(log_obj, default=str)


def configure_structured_logging(
    level: int = logging.INFO,
    logger_name: str | None = "tildeplayer_storage",
) -> logging.Logger:
    """
    Send storage logs to stdout as JSON lines.

    Args:
        level: Logging level (default: INFO)
        logger_name: Logger to configure (default: the package logger)

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)

    # Reconfiguring must not stack handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())

    logger.addHandler(handler)
    logger.setLevel(level)

    return logger


def get_storage_logger(name: str) -> logging.Logger:
    """Logger for a storage component ('local', 'gist', 'sync', ...)."""
    return logging.getLogger(f"tildeplayer_storage.{name}")


class StorageLoggerAdapter(logging.LoggerAdapter):
    """
    Tags every record with the collection document it concerns.

    Per-call ``extra`` is kept; the adapter's own context wins on clashes.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs
