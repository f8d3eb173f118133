"""Turn-completion tracking for session transcripts.

The tracker caches, per transcript file, the last seen mtime and the marker of
the last completed agent turn. Every change signal (watch event or poll tick)
funnels into `check_for_turn_complete`, whose mtime guard makes redundant
calls harmless.

Sessions found by the startup scan are treated as already synced: their first
observed turn only primes the baseline. Sessions created while the service is
running have never been uploaded, so their first turn is uploaded too.
"""
from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Callable, List, Optional

from ..kernel.transcript import MarkerReader, last_turn_marker
from .state import ServiceState, TrackedSession

logger = logging.getLogger("agentlogs.tracker")

TurnCompleteCallback = Callable[[str, str], None]


def normalize_path(path: Path | str) -> str:
    return os.path.abspath(str(path))


class SessionTracker:
    def __init__(
        self,
        state: ServiceState,
        *,
        on_turn_complete: TurnCompleteCallback,
        extension: str = ".jsonl",
        marker_reader: MarkerReader = last_turn_marker,
    ):
        self._state = state
        self._on_turn_complete = on_turn_complete
        self._extension = extension
        self._marker_reader = marker_reader

    def is_transcript(self, path: Path | str) -> bool:
        return str(path).endswith(self._extension)

    def paths(self) -> List[str]:
        return list(self._state.sessions.keys())

    def get(self, path: Path | str) -> Optional[TrackedSession]:
        return self._state.sessions.get(normalize_path(path))

    def _read_marker(self, key: str) -> Optional[str]:
        try:
            return self._marker_reader(Path(key))
        except Exception as e:
            logger.warning("Failed to read turn marker: %s", key, extra={"meta": {"error": str(e)}})
            return None

    def _fire(self, session: TrackedSession, marker: str) -> None:
        session.is_fresh = False
        logger.info("Turn completed: %s", session.path, extra={"meta": {"agentMessageTs": marker}})
        try:
            self._on_turn_complete(session.path, marker)
        except Exception:
            logger.exception("Turn-complete handler failed: %s", session.path)

    def scan_existing(self, root: Path, max_age_s: float, *, now: Optional[float] = None) -> int:
        """Track transcripts under `root` modified within `max_age_s`. Returns the count."""
        current = time.time() if now is None else now
        count = 0
        if not root.is_dir():
            logger.info("Scanned existing sessions", extra={"meta": {"count": 0, "root": str(root)}})
            return 0

        def _on_walk_error(err: OSError) -> None:
            logger.debug("Skipping unreadable directory: %s", getattr(err, "filename", ""))

        for dirpath, _dirnames, filenames in os.walk(root, onerror=_on_walk_error):
            for name in filenames:
                if not self.is_transcript(name):
                    continue
                full = os.path.join(dirpath, name)
                try:
                    mtime = os.stat(full).st_mtime
                except OSError:
                    continue
                if current - mtime >= max_age_s:
                    continue
                if self.track(full, is_fresh=False) is not None:
                    count += 1
        logger.info("Scanned existing sessions", extra={"meta": {"count": count}})
        return count

    def track(self, path: Path | str, is_fresh: bool = False) -> Optional[TrackedSession]:
        """Start (or restart) tracking a transcript; returns None if it cannot be stat'ed."""
        if not self.is_transcript(path):
            return None
        key = normalize_path(path)
        try:
            mtime_ns = os.stat(key).st_mtime_ns
        except OSError as e:
            logger.error("Failed to track session: %s", key, extra={"meta": {"error": str(e)}})
            return None

        marker = self._read_marker(key)
        session = TrackedSession(path=key, last_mtime_ns=mtime_ns, last_turn_marker=marker, is_fresh=is_fresh)
        self._state.sessions[key] = session
        logger.debug("Tracking session: %s", key, extra={"meta": {"isNew": is_fresh, "lastAgentMessageTs": marker}})

        # A brand-new file may already hold its first completed turn by the time
        # the creation event is handled; nothing has uploaded it yet.
        if is_fresh and marker is not None:
            self._fire(session, marker)
        return session

    def untrack(self, path: Path | str) -> bool:
        return self._state.sessions.pop(normalize_path(path), None) is not None

    def check_for_turn_complete(self, path: Path | str) -> bool:
        """Re-examine one tracked file. Returns True if an upload was triggered."""
        key = normalize_path(path)
        session = self._state.sessions.get(key)
        if session is None:
            return False
        try:
            mtime_ns = os.stat(key).st_mtime_ns
        except OSError:
            # Gone; the delete signal is responsible for untracking.
            return False
        if mtime_ns <= session.last_mtime_ns:
            return False
        session.last_mtime_ns = mtime_ns

        marker = self._read_marker(key)
        if marker is None or marker == session.last_turn_marker:
            return False

        first_discovery = session.last_turn_marker is None
        session.last_turn_marker = marker
        if first_discovery and not session.is_fresh:
            logger.debug("Session primed: %s", key, extra={"meta": {"agentMessageTs": marker}})
            return False

        self._fire(session, marker)
        return True
