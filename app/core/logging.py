"""Structured key=value logging for the knowledge-gap engine.

Every line carries the tenant when known. Ids of the objects the engine
works on (cluster, question, document) are promoted to top-level keys so a
single cluster's history can be grepped out of production logs.
"""

import logging
import sys
from typing import Any

CONTEXT_FIELDS = ("school_id", "cluster_id", "question_id", "document_id")


class StructuredFormatter(logging.Formatter):
    """Renders records as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "fn": record.funcName,
            "msg": record.getMessage(),
        }

        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                fields[key] = value

        fields.update(getattr(record, "extra_data", None) or {})

        if record.exc_info:
            fields["exc"] = self.formatException(record.exc_info).replace("\n", " | ")

        return " ".join(f"{k}={v}" for k, v in fields.items())


def _level_for_env() -> int:
    try:
        from app.core.config import get_settings

        return logging.DEBUG if get_settings().GAP_ENGINE_ENV == "dev" else logging.INFO
    except Exception:
        # Missing env (e.g. import during test collection)
        return logging.INFO


def get_logger(name: str) -> logging.Logger:
    """Logger with the structured stdout handler attached once.

    DEBUG in the ``dev`` environment, INFO elsewhere.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())
    logger.addHandler(handler)
    logger.setLevel(_level_for_env())
    return logger


def log_with_context(logger: logging.Logger, level: int, msg: str, **context: Any) -> None:
    """
    Log ``msg`` with context fields.

    Known ids (school_id, cluster_id, question_id, document_id) become
    top-level keys; anything else is appended after them.

    Example:
        log_with_context(logger, logging.INFO, "Resolved gap", school_id=sid, removed=3)
    """
    extra: dict[str, Any] = {key: context.pop(key) for key in CONTEXT_FIELDS if key in context}
    extra["extra_data"] = context
    logger.log(level, msg, extra=extra)
