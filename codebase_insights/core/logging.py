"""Logging setup for LLM invocation runs.

Router and provider warnings carry the request context (resource, purpose,
model tier) as ``extra=`` fields. Both output formats surface them:
  - text: ``... | router | [src/main.py] message``
  - JSON: one object per line with the context fields as top-level keys
"""

import json
import logging
import sys
from datetime import datetime, timezone

from codebase_insights.core.config import settings

CONTEXT_FIELDS = ("resource", "purpose", "model_tier")

TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(resource_tag)s%(message)s"

NOISY_LOGGERS = ("httpx", "httpcore")


class RequestContextFilter(logging.Filter):
    """Adds ``resource_tag`` ("[resource] " or "") so the text format never fails on plain records."""

    def filter(self, record: logging.LogRecord) -> bool:
        resource = getattr(record, "resource", "")
        record.resource_tag = f"[{resource}] " if resource else ""
        return True


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter for production."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value:
                log_data[name] = value
        if record.exc_info and record.exc_info[1]:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str | None = None, json_format: bool | None = None) -> logging.Handler:
    """Route all logging to stdout; arguments override LOG_LEVEL / LOG_JSON."""
    level_name = (level or settings.log_level).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)
    use_json = settings.log_json if json_format is None else json_format

    root = logging.getLogger()
    root.setLevel(numeric_level)
    for existing in root.handlers[:]:
        root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.addFilter(RequestContextFilter())
    if use_json:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(handler)

    # One line per HTTP request would drown the router's own messages
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return handler
