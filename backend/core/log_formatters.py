"""
Log formatters for the structured ``extra={...}`` logging convention.

Every module logs with a constant message and puts its context into
``extra`` (``action``, ``component``, ``severity`` and domain ids). These
formatters render that context so it survives into console and file output.
"""

import json
import logging

# Attributes present on every LogRecord; everything else came from ``extra``.
RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime"}


def extract_extra(record):
    """Return the ``extra`` context attached to a log record."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in RESERVED_ATTRS and not key.startswith("_")
    }


class StructuredFormatter(logging.Formatter):
    """
    Human readable formatter: standard prefix followed by ``key=value`` pairs.

    Example:
        2024-01-10 12:00:00 INFO ledger.services.debt_service Debt created
        | action=debt_created component=DebtService debt_id=4
    """

    default_format = "%(asctime)s %(levelname)s %(name)s %(message)s"

    def __init__(self, fmt=None, datefmt=None, style="%"):
        super().__init__(fmt or self.default_format, datefmt, style)

    def format(self, record):
        base = super().format(record)
        context = extract_extra(record)
        if not context:
            return base
        pairs = " ".join(f"{key}={value}" for key, value in sorted(context.items()))
        return f"{base} | {pairs}"


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log aggregation in production."""

    def format(self, record):
        payload = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(extract_extra(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)
