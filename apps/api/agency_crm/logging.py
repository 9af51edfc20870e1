from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from agency_crm.context import get_actor_user_id, get_correlation_id

MAX_FIELD_LENGTH = 500

# Extra keys allowed into the JSON "fields" object; anything else passed via
# `extra=` stays on the record for handlers but is never serialised.
STRUCTURED_FIELDS = frozenset(
    {
        "method",
        "path",
        "status_code",
        "duration_ms",
        "actor_user_id",
        "deal_id",
        "from_stage",
        "to_stage",
        "entity",
        "imported",
        "skipped",
        "failed",
        "total",
        "backup_id",
        "backup_file",
        "size",
        "command",
        "returncode",
        "status",
        "error",
    }
)

_STANDARD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "correlation_id"}
_base_factory = logging.getLogRecordFactory()


def _contextual_record(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _base_factory(*args, **kwargs)
    record.correlation_id = get_correlation_id()
    return record


def _clip(value: Any) -> Any:
    if isinstance(value, str) and len(value) > MAX_FIELD_LENGTH:
        return value[:MAX_FIELD_LENGTH]
    return value


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields = {
            key: _clip(value)
            for key, value in record.__dict__.items()
            if key in STRUCTURED_FIELDS and key not in _STANDARD_ATTRS
        }
        if "actor_user_id" not in fields and get_actor_user_id() is not None:
            fields["actor_user_id"] = get_actor_user_id()
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "fields": fields,
        }
        return json.dumps(payload, default=str)


def configure_logging(level_name: str | None = None) -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_agency_crm_configured", False):
        return

    level = logging.getLevelName((level_name or os.getenv("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter())

    logging.setLogRecordFactory(_contextual_record)
    root_logger.handlers = [handler]
    root_logger.setLevel(level)
    root_logger._agency_crm_configured = True  # type: ignore[attr-defined]
