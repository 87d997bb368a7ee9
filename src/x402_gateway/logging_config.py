"""Structured logging configuration with request context.

This module provides structured JSON logging with:
- Request IDs for tracing a single authorization across components
- Contextual fields (merchant, agent address)
- Masking of signer material and other secrets
"""
from __future__ import annotations

import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Mapping, Optional

from .constants import LoggingConfig

# Context variables for request tracking
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
merchant_id_var: ContextVar[Optional[str]] = ContextVar("merchant_id", default=None)
agent_address_var: ContextVar[Optional[str]] = ContextVar("agent_address", default=None)

_CONTEXT_FIELDS = ("request_id", "merchant_id", "agent_address")

_RESERVED_ATTRS = frozenset({
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "taskName",
    "exc_info",
    "exc_text",
    "stack_info",
    *_CONTEXT_FIELDS,
})


def mask_value(value: str, show_chars: int = 4) -> str:
    """Mask a sensitive value, showing only its first/last characters."""
    if not value or len(value) <= show_chars * 2:
        return LoggingConfig.MASK_PATTERN
    return f"{value[:show_chars]}...{value[-show_chars:]}"


def mask_sensitive_data(data: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of ``data`` with sensitive keys masked."""
    return {
        key: LoggingConfig.MASK_PATTERN if key in LoggingConfig.SENSITIVE_FIELDS else value
        for key, value in data.items()
    }


class RequestContextFilter(logging.Filter):
    """Logging filter that adds request context to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        record.merchant_id = merchant_id_var.get()
        record.agent_address = agent_address_var.get()
        return True


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for key in _CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        }
        log_data.update(mask_sensitive_data(extras))

        return json.dumps(log_data, default=str)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure structured logging for the gateway process.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON structured logging (True) or simple format (False)
        log_file: Optional file path for logging output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - "
            "[%(request_id)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(RequestContextFilter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(RequestContextFilter())
        root_logger.addHandler(file_handler)


def generate_request_id() -> str:
    """Generate a new request ID."""
    return f"req_{uuid.uuid4().hex[:16]}"


@contextmanager
def log_context(
    *,
    request_id: Optional[str] = None,
    merchant_id: Optional[str] = None,
    agent_address: Optional[str] = None,
) -> Iterator[str]:
    """Bind request context for the duration of one authorization.

    Yields the request id in effect (generated when not supplied).
    """
    rid = request_id or request_id_var.get() or generate_request_id()
    tokens = [
        (request_id_var, request_id_var.set(rid)),
        (merchant_id_var, merchant_id_var.set(merchant_id)),
        (agent_address_var, agent_address_var.set(agent_address)),
    ]
    try:
        yield rid
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
