"""Structured logging configuration.

Messages about a single study carry its identifier (and outcome, when
known) as structured fields so that exclusions and warnings can be
filtered per study in the JSON log.  Fields may be passed flat
(``extra={"study_id": ...}``), nested (``extra={"extra": {...}}``) or
bound once with :func:`study_logger`.
"""

import logging
import json
import sys
from typing import Any, Dict, Optional

from ..config.settings import settings

# Record attributes promoted to top-level JSON fields
CONTEXT_FIELDS = ("study_id", "outcome", "reason")


def _context(record: logging.LogRecord) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    for name in CONTEXT_FIELDS:
        value = getattr(record, name, None)
        if value is not None:
            fields[name] = value
    if isinstance(getattr(record, "extra", None), dict):
        fields.update(record.extra)  # type: ignore[attr-defined]
    return fields


class JSONFormatter(logging.Formatter):
    """Format logs as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(_context(record))
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        # Enum reasons and numpy scalars fall back to their string form
        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Plain text lines with the study context appended."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = {k: v for k, v in _context(record).items() if k in CONTEXT_FIELDS}
        if context:
            line += " [" + ", ".join(f"{k}={v}" for k, v in context.items()) + "]"
        return line


class StudyLogAdapter(logging.LoggerAdapter):
    """Logger bound to one study; the context merges into ``extra``."""

    def process(self, msg, kwargs):
        extra = kwargs.setdefault("extra", {})
        context = dict(self.extra)
        context.update(extra.get("extra", {}))
        extra["extra"] = context
        return msg, kwargs


def study_logger(logger: logging.Logger, study_id: str, outcome: Optional[str] = None) -> StudyLogAdapter:
    context: Dict[str, Any] = {"study_id": study_id}
    if outcome:
        context["outcome"] = outcome
    return StudyLogAdapter(logger, context)


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        if settings.log_format == "json":
            handler.setFormatter(JSONFormatter())
        else:
            handler.setFormatter(TextFormatter())
        logger.addHandler(handler)
        logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    return logger
