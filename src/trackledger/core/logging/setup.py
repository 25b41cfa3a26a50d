from __future__ import annotations

import json
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from .context import get_log_context

_LOGGER_NAME = "trackledger"
_CONFIGURED_ATTR = "_trackledger_json_logging"


class JSONFormatter(logging.Formatter):
    """One JSON object per line: level, logger, message, the active log context and any event fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "ts_iso_utc": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update(get_log_context())

        fields = getattr(record, "fields", None)
        if isinstance(fields, dict):
            payload.update(fields)

        if record.exc_info:
            exc_type, exc_value, exc_tb = record.exc_info
            payload["exc_type"] = exc_type.__name__ if exc_type else "Exception"
            payload["exc_msg"] = str(exc_value) if exc_value else ""
            payload["stack"] = "".join(traceback.format_exception(exc_type, exc_value, exc_tb))

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **fields: Any) -> None:
    logger.log(level, event, extra={"fields": fields})


def _parse_level(raw: str) -> int:
    return getattr(logging, raw.strip().upper(), logging.INFO)


def _is_on(name: str, default: str = "on") -> bool:
    return os.getenv(name, default).strip().casefold() == "on"


def _has_handler(logger: logging.Logger, kind: type[logging.Handler], path: Path | None = None) -> bool:
    for handler in logger.handlers:
        if not getattr(handler, _CONFIGURED_ATTR, False) or type(handler) is not kind:
            continue
        if path is None or Path(getattr(handler, "baseFilename", "")) == path:
            return True
    return False


def configure_logging(state_dir: Path) -> logging.Logger:
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(_parse_level(os.getenv("TRACKLEDGER_LOG_LEVEL", "INFO")))
    logger.propagate = False
    formatter = JSONFormatter()

    handlers: list[logging.Handler] = []
    if not _has_handler(logger, logging.StreamHandler):
        handlers.append(logging.StreamHandler(stream=sys.stdout))

    if _is_on("TRACKLEDGER_LOG_TO_FILE"):
        log_dir = Path(os.getenv("TRACKLEDGER_LOG_DIR") or (Path(state_dir) / "logs"))
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / "trackledger.log"
        if not _has_handler(logger, RotatingFileHandler, log_path):
            handlers.append(
                RotatingFileHandler(
                    filename=log_path,
                    maxBytes=int(os.getenv("TRACKLEDGER_LOG_MAX_BYTES", "5000000")),
                    backupCount=int(os.getenv("TRACKLEDGER_LOG_BACKUP_COUNT", "5")),
                    encoding="utf-8",
                )
            )

    for handler in handlers:
        handler.setFormatter(formatter)
        setattr(handler, _CONFIGURED_ATTR, True)
        logger.addHandler(handler)
    return logger
