from __future__ import annotations

import time
from datetime import datetime, timezone


def now_ms() -> int:
    return int(time.time() * 1000)


def ms_to_iso(ms: int) -> str:
    try:
        dt = datetime.fromtimestamp(int(ms) / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return ""
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")
