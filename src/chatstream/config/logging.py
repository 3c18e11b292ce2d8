"""Logging configuration: text or JSON records on stderr, with secrets redacted."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO, TYPE_CHECKING, Any

from chatstream.utils.validation import sanitize_log_message

if TYPE_CHECKING:
    from .settings import Settings

# Record attributes passed through ``extra=`` that formatters surface
CONTEXT_FIELDS = ("conversation_id", "provider", "status_code", "duration_ms")

# Third-party loggers that would otherwise echo request URLs and headers
QUIET_LOGGERS = ("httpx", "httpcore", "openai", "anthropic", "uvicorn.access")


class SanitizingFilter(logging.Filter):
    """Redact provider secrets from the rendered message.

    The message is rendered with its args before redaction, so a key passed
    as a non-string argument (an exception, a dict) is caught as well.
    Traceback text is redacted too.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = sanitize_log_message(record.getMessage())
        record.args = None
        if record.exc_info and not record.exc_text:
            record.exc_text = logging.Formatter().formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = sanitize_log_message(record.exc_text)
        return True


def _context(record: logging.LogRecord) -> dict[str, Any]:
    return {key: getattr(record, key) for key in CONTEXT_FIELDS if hasattr(record, key)}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context(record),
        }
        if record.exc_text:
            log_data["exception"] = record.exc_text
        elif record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines; stream context is appended as ``key=value``."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context(record)
        if not context:
            return line
        head, sep, tail = line.partition("\n")
        pairs = " ".join(f"{key}={value}" for key, value in context.items())
        return f"{head} [{pairs}]{sep}{tail}"


def configure_logging(
    level: str = "INFO",
    format: str = "text",
    sanitize_logs: bool = True,
    stream: IO[str] | None = None,
) -> logging.Handler:
    """Configure application logging.

    Replaces any handlers on the root logger with a single stream handler.
    Logs go to stderr by default so they never interleave with streamed
    replies on stdout.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Log format ('text' or 'json')
        sanitize_logs: If True, redact API keys and tokens from logs
        stream: Destination stream (defaults to stderr)

    Returns:
        The installed handler.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if format.lower() == "json" else TextFormatter())
    if sanitize_logs:
        handler.addFilter(SanitizingFilter())
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler


def configure_from_settings(settings: Settings, level: str | None = None) -> logging.Handler:
    """Configure logging from settings, optionally overriding the level."""
    return configure_logging(
        level=level or settings.log_level,
        format=settings.log_format,
        sanitize_logs=settings.sanitize_logs,
    )
