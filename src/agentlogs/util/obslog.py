from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional, TextIO


_CONFIGURED: Dict[str, bool] = {}

_LEVEL_NAMES = {"WARNING": "WARN", "CRITICAL": "FATAL"}


def _utc_ts_iso(ts: float) -> str:
    try:
        return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    except Exception:
        return ""


class ServiceLineFormatter(logging.Formatter):
    """Render `[timestamp] [component] [LEVEL] message {json-metadata}`.

    Metadata is attached with `logger.info("...", extra={"meta": {...}})` and is
    left off entirely when absent or empty.
    """

    def __init__(self, *, component: str):
        super().__init__()
        self._component = str(component or "").strip() or "service"

    def format(self, record: logging.LogRecord) -> str:
        level = str(getattr(record, "levelname", "") or "INFO")
        level = _LEVEL_NAMES.get(level, level)
        line = "[%s] [%s] [%s] %s" % (
            _utc_ts_iso(getattr(record, "created", 0.0) or 0.0),
            self._component,
            level,
            record.getMessage(),
        )

        meta: Dict[str, Any] = {}
        raw = getattr(record, "meta", None)
        if isinstance(raw, dict):
            meta.update(raw)
        if record.exc_info:
            try:
                meta["exc"] = self.formatException(record.exc_info)
            except Exception:
                meta["exc"] = "exception"

        if meta:
            try:
                line += " " + json.dumps(meta, ensure_ascii=False, default=str)
            except Exception:
                # Never crash logging over unserialisable metadata.
                line += ' {"meta":"(serialization failed)"}'
        return line


def parse_level(level: str, default: int = logging.INFO) -> int:
    s = str(level or "").strip().upper()
    if not s:
        return default
    if s == "WARN":
        s = "WARNING"
    value = getattr(logging, s, None)
    return value if isinstance(value, int) else default


def setup_service_logging(
    *,
    component: str = "service",
    log_path: Optional[Path] = None,
    level: str = "INFO",
    stream: Optional[TextIO] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 3,
    force: bool = False,
) -> logging.Logger:
    """Configure the `agentlogs` logger tree once per process.

    - A RotatingFileHandler on `log_path` (if given) plus a StreamHandler on
      stdout, both with ServiceLineFormatter.
    - If the log file cannot be opened, logging continues on the stream only.
    - `force=True` replaces previously installed handlers (tests, re-exec).
    """
    logger = logging.getLogger("agentlogs")
    key = f"agentlogs:{component}"
    if _CONFIGURED.get(key) and not force:
        return logger
    _CONFIGURED[key] = True

    lvl = parse_level(level)
    logger.setLevel(lvl)
    logger.propagate = False

    for h in list(logger.handlers):
        logger.removeHandler(h)
        try:
            h.close()
        except Exception:
            pass

    formatter = ServiceLineFormatter(component=component)

    if log_path is not None:
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            fh = RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
            fh.setLevel(lvl)
            fh.setFormatter(formatter)
            logger.addHandler(fh)
        except OSError as e:
            print(f"Warning: failed to set up file logging at {log_path}: {e}", file=sys.stderr)

    sh = logging.StreamHandler(stream or sys.stdout)
    sh.setLevel(lvl)
    sh.setFormatter(formatter)
    logger.addHandler(sh)
    return logger
