# backend/letlog/logging_config.py
from __future__ import annotations

import enum
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

from .config import settings
from .middleware.request_id import get_request_id

# Structured extras copied onto the line when a log call sets them
EXTRA_KEYS = ("user_id", "tenancy_id", "invitation_id", "review_id", "action", "kind")


def _plain(value: Any) -> Any:
    # Role / ErrorKind / statuses log as their wire value, not "ErrorKind.FORBIDDEN"
    if isinstance(value, enum.Enum):
        return value.value
    return value


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line: timestamp, level, logger, message, the current
    request id, the policy version in force, and any structured extras.
    """

    def __init__(self, *, policy_version: Optional[str] = None, env: Optional[str] = None):
        super().__init__()
        self.policy_version = policy_version or settings.policy_version
        self.env = env or settings.app_env

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "env": self.env,
            "policy_version": self.policy_version,
        }

        rid = get_request_id()
        if rid:
            payload["request_id"] = rid

        for k in EXTRA_KEYS:
            v = getattr(record, k, None)
            if v is not None:
                payload[k] = _plain(v)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: Optional[str] = None) -> None:
    lvl = (level or settings.log_level or "INFO").upper()

    root = logging.getLogger()
    root.setLevel(lvl)

    # uvicorn --reload and repeated create_app() calls would stack handlers
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(lvl)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(lvl)
    logging.getLogger("sqlalchemy.engine").setLevel((settings.sql_log_level or "WARNING").upper())
