"""Logging setup helpers for agentkoppler."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from .config import LoggingConfig

_CONTROLLED_LOGGER_PREFIXES = (
    "httpx",
    "uvicorn",
    "watchdog",
)
_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JsonLogFormatter(logging.Formatter):
    """Render log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(cfg: LoggingConfig) -> None:
    """Install one root handler and pull third-party loggers onto the configured level.

    Safe to call again after a config reload; previously installed handlers are replaced.
    """
    level = getattr(logging, cfg.level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter() if cfg.json_logs else logging.Formatter(_TEXT_FORMAT))
    root.handlers.clear()
    root.addHandler(handler)

    # uvicorn installs its own handlers; route everything through the root handler instead.
    for name in list(logging.root.manager.loggerDict):
        if not str(name).startswith(_CONTROLLED_LOGGER_PREFIXES):
            continue
        logger = logging.getLogger(str(name))
        logger.setLevel(level)
        logger.handlers.clear()
        logger.propagate = True
    for prefix in _CONTROLLED_LOGGER_PREFIXES:
        logging.getLogger(prefix).setLevel(level)
