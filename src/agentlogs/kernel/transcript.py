"""Turn-marker extraction from session transcripts.

A transcript is newline-delimited JSON. A completed agent turn is recorded as
an `event_msg` line whose payload type is `agent_message`; that line's
`timestamp` identifies the turn. The tracker only compares markers for
equality, so any stable value would do.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Optional


MarkerReader = Callable[[Path], Optional[str]]


def _turn_marker_of(record: Any) -> Optional[str]:
    if not isinstance(record, dict):
        return None
    if record.get("type") != "event_msg":
        return None
    payload = record.get("payload")
    if not isinstance(payload, dict) or payload.get("type") != "agent_message":
        return None
    ts = record.get("timestamp")
    if ts is None:
        return None
    return str(ts)


def last_turn_marker(path: Path) -> Optional[str]:
    """Return the marker of the last completed agent turn, or None.

    Unreadable files and files without any completed turn both yield None.
    Lines that are not valid JSON (e.g. a partially flushed tail) are skipped.
    """
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    for line in reversed(text.strip().splitlines()):
        line = line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except ValueError:
            continue
        marker = _turn_marker_of(record)
        if marker is not None:
            return marker
    return None
