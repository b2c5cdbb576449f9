from __future__ import annotations

import json
import logging
import os
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(f"chaldduck_pricing.{name}")
    if logger.handlers:
        return logger
    logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Emit one JSON line: ``{"event": ..., "timestamp": ..., **fields}``."""
    if not logger.isEnabledFor(level):
        return
    payload: Dict[str, Any] = {
        "event": event,
        "logger": logger.name,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    payload.update(fields)
    logger.log(level, json.dumps(payload, default=_json_default, ensure_ascii=False))
