"""Append-only watcher event log.

Every change-source event, poll-detected turn completion and upload outcome is
appended as one JSON object per line so that `agentlogsd logs` (or `tail -f`)
can follow the service from outside.
"""
from __future__ import annotations

import time
from pathlib import Path
from typing import Iterable, Optional

from ..contracts.v1 import WatcherEvent
from ..util.file_lock import exclusive_lock
from ..util.time import ms_to_iso, now_ms


def append_event(
    events_path: Path,
    *,
    type: str,
    path: str,
    reason: Optional[str] = None,
    timestamp: Optional[int] = None,
    lock_path: Optional[Path] = None,
) -> Optional[WatcherEvent]:
    """Append one event (best-effort). Returns the recorded event, or None on failure."""
    try:
        ev = WatcherEvent(type=type, path=str(path), reason=reason, timestamp=timestamp if timestamp is not None else now_ms())
    except ValueError:
        return None
    line = ev.model_dump_json(exclude_none=True)
    try:
        events_path.parent.mkdir(parents=True, exist_ok=True)
        lk = lock_path or events_path.with_name(events_path.name + ".lock")
        with exclusive_lock(lk):
            with events_path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
    except OSError:
        # Auxiliary log; the caller never fails because of it.
        return ev
    return ev


def format_event_line(line: str) -> str:
    """Human rendering used by `agentlogsd logs`: `[ISO time] type: path`."""
    try:
        ev = WatcherEvent.model_validate_json(line)
    except ValueError:
        return line
    return f"[{ms_to_iso(ev.timestamp)}] {ev.type}: {ev.path}"


def follow(path: Path, *, sleep_seconds: float = 0.2) -> Iterable[str]:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch(exist_ok=True)
    with path.open("r", encoding="utf-8", errors="replace") as f:
        f.seek(0, 2)
        while True:
            line = f.readline()
            if line:
                yield line.rstrip("\n")
                continue
            time.sleep(sleep_seconds)
