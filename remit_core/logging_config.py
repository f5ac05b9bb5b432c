"""Structured logging configuration with settlement context.

This module provides structured JSON logging with:
- The transaction id and operator account of the settlement being processed
- Consistent log formatting for every ``remit_core`` logger
"""
from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Iterator, Optional

# Context variables for settlement tracking
transaction_id_var: ContextVar[Optional[str]] = ContextVar("transaction_id", default=None)
operator_account_id_var: ContextVar[Optional[str]] = ContextVar("operator_account_id", default=None)

_CONTEXT_FIELDS = ("transaction_id", "operator_account_id")

_RESERVED_ATTRS = frozenset((
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
))


class SettlementContextFilter(logging.Filter):
    """Logging filter that adds the current settlement context to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.transaction_id = transaction_id_var.get()
        record.operator_account_id = operator_account_id_var.get()
        return True


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for field in _CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value:
                log_data[field] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Extra fields passed through ``extra=``
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure structured logging for the application.

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
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - "
            "[%(transaction_id)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(SettlementContextFilter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(SettlementContextFilter())
        root_logger.addHandler(file_handler)


def get_transaction_id() -> Optional[str]:
    """Get the transaction id of the settlement in progress, if any."""
    return transaction_id_var.get()


@contextmanager
def settlement_context(
    transaction_id: Optional[str],
    operator_account_id: Optional[str] = None,
) -> Iterator[None]:
    """Bind a settlement's identifiers to every log record emitted inside the block."""
    tx_token = transaction_id_var.set(transaction_id)
    op_token = operator_account_id_var.set(operator_account_id)
    try:
        yield
    finally:
        operator_account_id_var.reset(op_token)
        transaction_id_var.reset(tx_token)
