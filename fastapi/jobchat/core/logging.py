"""Structured JSON logging for the service."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any


class JSONFormatter(logging.Formatter):
    """Serialize records as one JSON object per line, including `extra` fields."""

    _RESERVED = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key in self._RESERVED:
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def resolve_log_level(value: str | int | None, *, default: int = logging.INFO) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip():
        candidate = value.strip()
        if candidate.isdigit():
            return int(candidate)
        mapped = logging.getLevelName(candidate.upper())
        if isinstance(mapped, int):
            return mapped
    return default


def configure_logging(level: str | int | None = logging.INFO, *, log_file: str | None = None) -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(resolve_log_level(level))
    root_logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    if log_file:
        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_path,
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
        except OSError:
            root_logger.exception("Could not open log file", extra={"log_file": log_file})
        else:
            file_handler.setFormatter(JSONFormatter())
            root_logger.addHandler(file_handler)
