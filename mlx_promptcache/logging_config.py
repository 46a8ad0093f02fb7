# SPDX-License-Identifier: Apache-2.0
"""
Logging configuration for mlx-promptcache.

This module provides centralized logging configuration with support for:
- Standard logging with configurable levels
- Structured JSON logging (optional)
- Generation context tracking
- Consistent formatting across all modules
"""

import logging
import sys
from contextvars import ContextVar
from typing import Optional

# Context variable for generation ID tracking
_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

TRACE = 5


class RequestContextFilter(logging.Filter):
    """
    Add request_id to log records.

    Lets every line logged while a generation is in flight be correlated
    with that generation.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Add request_id attribute to log record."""
        record.request_id = _request_id.get() or "-"
        return True


class ColoredFormatter(logging.Formatter):
    """
    Colored log formatter for terminal output.

    Uses ANSI color codes to highlight different log levels.
    """

    COLORS = {
        TRACE: "\033[90m",             # Gray (TRACE)
        logging.DEBUG: "\033[36m",     # Cyan
        logging.INFO: "\033[32m",      # Green
        logging.WARNING: "\033[33m",   # Yellow
        logging.ERROR: "\033[31m",     # Red
        logging.CRITICAL: "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with colors."""
        color = self.COLORS.get(record.levelno, "")
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


class JsonFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Outputs logs as JSON objects for easy parsing by log aggregators.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        import json

        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None)
        if request_id and request_id != "-":
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Extra fields passed through `extra=`
        for key in ["model_key", "tokens", "tokens_reused", "latency_ms"]:
            if hasattr(record, key) and key not in log_data:
                log_data[key] = getattr(record, key)

        return json.dumps(log_data)


def _resolve_level(level: str) -> int:
    level_name = level.upper()
    if level_name == "TRACE":
        return TRACE
    return getattr(logging, level_name, logging.INFO)


def get_request_id() -> Optional[str]:
    """Get the current generation ID from context."""
    return _request_id.get()


def set_request_id(request_id: Optional[str]) -> None:
    """Set the current generation ID in context."""
    _request_id.set(request_id)


def configure_logging(
    level: str = "INFO",
    format_style: str = "standard",
    include_request_id: bool = True,
    colored: bool = True,
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (TRACE, DEBUG, INFO, WARNING, ERROR, CRITICAL).
        format_style: "standard" for plain text, "json" for structured JSON.
        include_request_id: Whether to include request_id in log format.
        colored: Whether to use colored output (only for standard format).
    """
    log_level = _resolve_level(level)
    logging.addLevelName(TRACE, "TRACE")

    if include_request_id:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] - %(message)s"
    else:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)

    if format_style == "json":
        formatter = JsonFormatter(format_str)
    elif colored and sys.stderr.isatty():
        formatter = ColoredFormatter(format_str)
    else:
        formatter = logging.Formatter(format_str)

    handler.setFormatter(formatter)

    if include_request_id:
        handler.addFilter(RequestContextFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    logging.getLogger("mlx_promptcache").setLevel(log_level)

    # Suppress noisy third-party loggers unless trace level
    third_party_level = log_level if log_level <= TRACE else logging.INFO
    logging.getLogger("transformers").setLevel(max(third_party_level, logging.WARNING))
    logging.getLogger("huggingface_hub").setLevel(third_party_level)
    logging.getLogger("httpx").setLevel(third_party_level)


def get_logger(
    name: str,
    request_id: Optional[str] = None,
) -> logging.Logger:
    """
    Get a logger with optional generation context.

    Args:
        name: Logger name (usually __name__).
        request_id: Optional generation ID to set in context.

    Returns:
        Logger instance.
    """
    if request_id:
        set_request_id(request_id)

    return logging.getLogger(name)


class RequestLogContext:
    """
    Context manager for generation-scoped logging.

    Usage:
        with RequestLogContext(request_id="gen-abc123"):
            logger.info("Decoding")
    """

    def __init__(self, request_id: str):
        self.request_id = request_id
        self.previous_id: Optional[str] = None

    def __enter__(self) -> "RequestLogContext":
        self.previous_id = _request_id.get()
        _request_id.set(self.request_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        _request_id.set(self.previous_id)
