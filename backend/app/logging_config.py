import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Optional

LOGGER_NAME = "iso9001"

_LOGGER: Optional[logging.Logger] = None


class JsonLineFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level and the event fields."""

    def format(self, record: logging.LogRecord) -> str:
        fields = getattr(record, "fields", None)
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
        }
        if fields is not None:
            payload.update(fields)
        else:
            payload["message"] = record.getMessage()
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def get_logger() -> logging.Logger:
    global _LOGGER
    if _LOGGER is not None:
        return _LOGGER

    logger = logging.getLogger(LOGGER_NAME)
    logger.propagate = False  # uvicorn installs its own root handlers
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.set_name("json_lines")
        handler.setFormatter(JsonLineFormatter())
        logger.addHandler(handler)
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logger.setLevel(getattr(logging, level, logging.INFO))

    _LOGGER = logger
    return logger


def log_event(event: str, level: str = "info", **fields) -> None:
    logger = get_logger()
    levelno = logging.getLevelName(level.upper())
    if not isinstance(levelno, int) or not logger.isEnabledFor(levelno):
        return
    logger.log(levelno, event, extra={"fields": dict(fields, event=event)})
