"""Centralized logging configuration for the test environment.

This module provides:
- Unified logger setup with console and optional rotating file handlers
- Plain text or structured JSON console output
- Lifecycle phase propagation via contextvars
- Helper functions for getting configured loggers
- Error message and URI sanitization for secure logging
"""

import logging
import re
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from pythonjsonlogger.json import JsonFormatter

from testenv.core.config import get_settings

# Patterns for sensitive data sanitization
_CREDENTIAL_PATTERNS = [
    re.compile(r"(password|secret|token|api[_-]?key|auth)[=:]\s*\S+", re.IGNORECASE),
    re.compile(r"Bearer\s+\S+", re.IGNORECASE),
    re.compile(r"(://[^:/@\s]+):[^@\s]+@"),
]

# Context variable for lifecycle phase propagation
_phase: ContextVar[str | None] = ContextVar("testenv_phase", default=None)

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_NOISY_LOGGERS = ("docker", "urllib3", "httpx", "httpcore", "asyncio")

_configured = False


def get_phase() -> str | None:
    """Get the current lifecycle phase from context."""
    return _phase.get()


def set_phase(phase: str | None) -> None:
    """Set the lifecycle phase in context."""
    _phase.set(phase)


class PhaseFilter(logging.Filter):
    """Filter that adds the lifecycle phase to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.phase = get_phase()  # type: ignore[attr-defined]
        return True


class CustomJsonFormatter(JsonFormatter):
    """Custom JSON formatter with ISO timestamp and phase field."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        """Add custom fields to the JSON log record."""
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.now(UTC).isoformat()
        log_record["level"] = record.levelname
        log_record["component"] = record.name

        if getattr(record, "phase", None):
            log_record["phase"] = record.phase  # type: ignore[attr-defined]


def setup_logging(force: bool = False) -> None:
    """Configure logging for the test environment.

    Sets up:
    - Console handler (StreamHandler) with plain text or JSON output
    - File handler (RotatingFileHandler) when a log file path is configured

    Calling it again is a no-op unless ``force`` is set.
    """
    global _configured  # noqa: PLW0603

    if _configured and not force:
        return

    settings = get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    phase_filter = PhaseFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.addFilter(phase_filter)
    if settings.log_format == "json":
        console_handler.setFormatter(CustomJsonFormatter("%(message)s"))
    else:
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root_logger.addHandler(console_handler)

    if settings.log_file_path:
        try:
            log_path = Path(settings.log_file_path)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = RotatingFileHandler(
                filename=str(log_path),
                maxBytes=settings.log_file_max_bytes,
                backupCount=settings.log_file_backup_count,
                encoding="utf-8",
            )
            file_handler.setLevel(log_level)
            file_handler.addFilter(phase_filter)
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
            root_logger.addHandler(file_handler)
        except OSError as e:
            root_logger.warning(f"Could not set up file logging: {e}")

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True
    root_logger.debug(
        f"Logging configured: level={settings.log_level}, "
        f"format={settings.log_format}, file={settings.log_file_path}"
    )


def sanitize_error(error: BaseException, max_length: int = 500) -> str:
    """Sanitize an error message for logging.

    Removes credentials, bearer tokens and URI passwords, and truncates
    long messages.

    Args:
        error: The exception to sanitize
        max_length: Maximum length of the sanitized message

    Returns:
        Sanitized error message safe for logging
    """
    msg = str(error) or type(error).__name__

    for pattern in _CREDENTIAL_PATTERNS[:2]:
        msg = pattern.sub("[REDACTED]", msg)
    msg = _CREDENTIAL_PATTERNS[2].sub(r"\1:***@", msg)

    if len(msg) > max_length:
        msg = msg[:max_length] + "...[truncated]"

    return msg


def redact_uri(uri: str) -> str:
    """Replace the password of a connection URI with ``***``."""
    parts = urlsplit(uri)
    if parts.password is None:
        return uri
    netloc = f"{parts.username}:***@{parts.hostname}"
    if parts.port is not None:
        netloc += f":{parts.port}"
    return urlunsplit(parts._replace(netloc=netloc))


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name.

    Args:
        name: Logger name, typically __name__ of the calling module

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)
