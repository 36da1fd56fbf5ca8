"""Structured logging helpers shared across runtime setup components."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .settings import LOGGER_NAME

__all__ = ["JSONFormatter", "setup_logging"]

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Formatter emitting one JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        """Render ``record`` as a JSON string including structured ``extra`` fields."""

        now = datetime.now(timezone.utc)
        payload = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "stage": getattr(record, "stage", None),
        }
        for key, value in vars(record).items():
            if key in _RESERVED_ATTRS or key in payload or key.startswith("_"):
                continue
            payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(
    *,
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    quiet: bool = False,
    max_log_size_mb: int = 10,
    propagate: bool = False,
) -> logging.Logger:
    """Configure bootstrapper logging: a console handler plus optional JSON log files."""

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        if getattr(handler, "_piton_managed", False):
            logger.removeHandler(handler)
            if isinstance(handler, logging.StreamHandler):
                stream = getattr(handler, "stream", None)
                if stream in (sys.stdout, sys.stderr):
                    continue
            handler.close()

    if not quiet:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(logging.Formatter("[PITON] %(message)s"))
        stream_handler._piton_managed = True  # type: ignore[attr-defined]
        logger.addHandler(stream_handler)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        today = datetime.now(timezone.utc).strftime("%Y%m%d")
        file_handler = RotatingFileHandler(
            log_dir / f"piton-{today}.jsonl",
            maxBytes=int(max_log_size_mb * 1024 * 1024),
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setFormatter(JSONFormatter())
        file_handler._piton_managed = True  # type: ignore[attr-defined]
        logger.addHandler(file_handler)

    if not logger.handlers:
        null_handler = logging.NullHandler()
        null_handler._piton_managed = True  # type: ignore[attr-defined]
        logger.addHandler(null_handler)

    logger.propagate = propagate
    return logger
