from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from app.context import get_actor_id, get_correlation_id
from app.core.config import get_settings


# Structured keys a caller may pass through ``extra=``; anything else is dropped.
LOG_FIELDS = frozenset(
    {
        # http
        "method",
        "path",
        "status_code",
        "duration_ms",
        # crm
        "actor_role",
        "lead_id",
        "assignee_id",
        "lead_count",
        "status",
        # bulk
        "operation",
        "requested",
        "updated",
        "skipped",
        "unchanged",
        "missing",
        "deleted",
        "overwrite",
        # events
        "event_name",
        "error",
    }
)
MAX_ERROR_LENGTH = 500


def bind_request_context(record: logging.LogRecord) -> logging.LogRecord:
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    if getattr(record, "actor_id", None) is None:
        record.actor_id = get_actor_id()
    return record


class RequestContextFilter(logging.Filter):
    """Attach correlation and actor ids to records created outside the factory."""

    def filter(self, record: logging.LogRecord) -> bool:
        bind_request_context(record)
        return True


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields = {
            key: value
            for key, value in vars(record).items()
            if key in LOG_FIELDS and value is not None
        }
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "actor_id": getattr(record, "actor_id", None),
            "fields": fields,
        }
        return json.dumps(payload, default=str)


_base_factory = logging.getLogRecordFactory()


def _context_record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    return bind_request_context(_base_factory(*args, **kwargs))


def configure_logging(level: str | None = None) -> None:
    """Route the root logger to stdout as one JSON object per line. Safe to call repeatedly."""

    root = logging.getLogger()
    if getattr(root, "_leadhive_configured", False):
        return

    level_name = (level or get_settings().log_level).upper()
    resolved = logging.getLevelName(level_name)
    if not isinstance(resolved, int):
        resolved = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(RequestContextFilter())

    logging.setLogRecordFactory(_context_record_factory)
    root.handlers[:] = [handler]
    root.setLevel(resolved)
    root._leadhive_configured = True  # type: ignore[attr-defined]
