from __future__ import annotations

import math
from typing import Any

_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off"}


def coerce_bool(value: Any, *, default: bool = False) -> bool:
    """Coerce a loosely-typed value into a boolean.

    Settings may arrive from YAML or environment variables as strings like
    "false"/"0". Unknown strings map to `default` so that bool("false") never
    silently turns a feature on.
    """
    if value is None:
        return bool(default)
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, float):
        if math.isnan(value):
            return bool(default)
        return value != 0.0
    if isinstance(value, str):
        s = value.strip().lower()
        if not s:
            return bool(default)
        if s in _TRUE:
            return True
        if s in _FALSE:
            return False
        try:
            return int(s) != 0
        except Exception:
            return bool(default)
    return bool(value)


def coerce_float(value: Any, *, default: float, minimum: float = 0.0) -> float:
    """Parse a positive duration; fall back to `default` when missing or out of range."""
    if value is None or isinstance(value, bool):
        return float(default)
    try:
        f = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return float(default)
    if math.isnan(f) or f <= minimum:
        return float(default)
    return f
