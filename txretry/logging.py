# SPDX-License-Identifier: MIT
"""Structured JSON logging for transaction orchestration.

Modules in :mod:`txretry` log through plain :func:`logging.getLogger` loggers
and attach machine readable context (attempt number, lifecycle stage, error
type) under the ``extra_fields`` record attribute.  :class:`JSONFormatter`
flattens that context into the emitted document.
"""
from __future__ import annotations

import json
import logging
import sys
from typing import IO, Any, Dict

__all__ = ["JSONFormatter", "configure_logging"]


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
        }

        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            log_data.update(extra_fields)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class _PlainFormatter(logging.Formatter):
    """Human readable formatter that appends structured fields as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict) and extra_fields:
            rendered = " ".join(f"{key}={value}" for key, value in extra_fields.items())
            message = f"{message} [{rendered}]"
        return message


def configure_logging(
    level: str = "INFO",
    use_json: bool = True,
    stream: IO[str] | None = None,
) -> None:
    """Configure application-wide logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: Whether to use JSON formatting
        stream: Output stream (defaults to sys.stderr)
    """
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(resolved)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    if use_json:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            _PlainFormatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    root_logger.addHandler(handler)
