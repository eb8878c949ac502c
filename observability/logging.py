from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Dict, Optional

_LOGGER_NAME = "walletsend"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _configure() -> logging.Logger:
    logger = logging.getLogger(_LOGGER_NAME)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.propagate = False
    level = (os.getenv("WALLETSEND_LOG_LEVEL") or "info").strip().lower()
    logger.setLevel(_LEVELS.get(level, logging.INFO))
    return logger


_logger = _configure()


def build_log_context(**fields: Any) -> Dict[str, Any]:
    """
    Base context merged into every event emitted with it.

    The service name is always present so that lines from several processes can be
    told apart once aggregated.
    """
    ctx: Dict[str, Any] = {"service": (os.getenv("WALLETSEND_SERVICE_NAME") or "walletsend").strip()}
    ctx.update({k: v for k, v in fields.items() if v is not None})
    return ctx


def log_event(
    event: str,
    *,
    ctx: Optional[Dict[str, Any]] = None,
    data: Optional[Dict[str, Any]] = None,
    level: str = "info",
) -> None:
    """
    Emit one JSON line: {"ts_ms", "event", "level", **ctx, "data"}.
    """
    lvl = _LEVELS.get(level, logging.INFO)
    if not _logger.isEnabledFor(lvl):
        return
    record: Dict[str, Any] = {"ts_ms": int(time.time() * 1000), "event": event, "level": level}
    record.update(ctx or {})
    if data:
        record["data"] = data
    _logger.log(lvl, json.dumps(record, sort_keys=True, default=str))
