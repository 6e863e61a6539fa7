# runonce/telemetry/logging.py
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, MutableMapping, Tuple

# Fields a guard attaches to its records, in output order.
GUARD_FIELDS: Tuple[str, ...] = ("guard", "error", "wait_timeout_s")

_HANDLER_FLAG = "_runonce_handler"


class GuardJsonFormatter(logging.Formatter):
    """One JSON object per line: envelope keys plus whichever guard fields
    the record carries."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
        }
        for field in GUARD_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: int | str | None = None) -> logging.Logger:
    """Send ``runonce`` records to stdout as JSON lines.

    Only the package logger is touched; calling again adjusts the level but
    never adds a second handler. ``level`` defaults to RUNONCE_LOG_LEVEL.
    """
    if level is None:
        from runonce import settings as settings_module

        level = settings_module.settings.log_level

    logger = logging.getLogger("runonce")
    logger.setLevel(level if isinstance(level, int) else str(level).upper())

    if not any(getattr(h, _HANDLER_FLAG, False) for h in logger.handlers):
        handler = logging.StreamHandler(stream=sys.stdout)
        handler.setFormatter(GuardJsonFormatter())
        setattr(handler, _HANDLER_FLAG, True)
        logger.addHandler(handler)
    return logger


class GuardLogAdapter(logging.LoggerAdapter[logging.Logger]):
    """Stamps the bound guard context on every record."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs


def bind(logger: logging.Logger, **context: Any) -> GuardLogAdapter:
    return GuardLogAdapter(logger, context)
