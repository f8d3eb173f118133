"""Change sources feeding the session tracker.

Two independent triggers run side by side:

- a watchdog subscription on the watch root (recursive). Its observer thread
  never touches service state; it posts `(kind, path)` onto the event loop.
- a standing poll timer that re-checks every tracked path.

Filesystem notifications can be coalesced or missed (atomic renames, editors,
network filesystems); the poller is slow but eventually correct. Both end in
`SessionTracker.check_for_turn_complete`, whose mtime guard deduplicates them.
"""
from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Callable, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .state import ServiceState
from .tracker import SessionTracker, normalize_path

logger = logging.getLogger("agentlogs.watcher")

ChangeSink = Callable[[str, str], None]
EventRecorder = Callable[[str, str, Optional[str]], None]

_KIND_BY_EVENT = {
    "created": "create",
    "modified": "update",
    "closed": "update",
    "deleted": "delete",
}


def _decode(p: Any) -> str:
    if isinstance(p, bytes):
        return os.fsdecode(p)
    return str(p)


class TranscriptEventHandler(FileSystemEventHandler):
    """Translate watchdog events into change signals on the loop thread."""

    def __init__(self, loop: asyncio.AbstractEventLoop, sink: ChangeSink, *, extension: str):
        self.loop = loop
        self._sink = sink
        self._extension = extension

    def _matches(self, path: str) -> bool:
        return path.endswith(self._extension)

    def _post(self, kind: str, path: str) -> None:
        if self.loop.is_closed():
            return
        try:
            self.loop.call_soon_threadsafe(self._sink, kind, normalize_path(path))
        except RuntimeError:
            # Loop shut down between the check and the call.
            pass

    def on_any_event(self, event: Any) -> None:
        if getattr(event, "is_directory", False):
            return
        event_type = getattr(event, "event_type", "")

        # Atomic writes land as temp -> final renames.
        if event_type == "moved":
            src = _decode(event.src_path)
            dest = _decode(getattr(event, "dest_path", "") or "")
            if self._matches(src):
                self._post("delete", src)
            if dest and self._matches(dest):
                self._post("create", dest)
            return

        kind = _KIND_BY_EVENT.get(event_type)
        if kind is None:
            return
        src = _decode(event.src_path)
        if self._matches(src):
            self._post(kind, src)


class ChangeSource:
    def __init__(
        self,
        state: ServiceState,
        tracker: SessionTracker,
        *,
        root: Path,
        extension: str,
        poll_interval_s: float,
        use_watcher: bool = True,
        record_event: Optional[EventRecorder] = None,
    ):
        self._state = state
        self._tracker = tracker
        self._root = root
        self._extension = extension
        self._poll_interval_s = float(poll_interval_s)
        self._use_watcher = use_watcher
        self._record_event = record_event
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._observer: Any = None

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        if self._use_watcher:
            self.start_watching()
        else:
            logger.info("Filesystem watcher disabled; polling only")
        self.start_polling()

    def start_watching(self) -> bool:
        """Subscribe to filesystem events under the root. Failure degrades to polling."""
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        if not self._root.is_dir():
            logger.warning("Sessions directory not found: %s", self._root)
            return False
        handler = TranscriptEventHandler(self._loop, self.handle_event, extension=self._extension)
        try:
            observer = Observer()
            observer.schedule(handler, str(self._root), recursive=True)
            observer.start()
        except Exception as e:
            logger.warning("Failed to start watcher", extra={"meta": {"error": str(e), "root": str(self._root)}})
            return False
        self._observer = observer
        self._state.watching = True
        logger.info("Watching %s", self._root)
        return True

    def start_polling(self) -> None:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        if self._state.poll_timer is not None:
            return
        self._state.poll_timer = self._loop.call_later(self._poll_interval_s, self._poll_tick)
        logger.info("Polling sessions", extra={"meta": {"intervalMs": int(self._poll_interval_s * 1000)}})

    def _poll_tick(self) -> None:
        assert self._loop is not None
        self._state.poll_timer = self._loop.call_later(self._poll_interval_s, self._poll_tick)
        self.poll_once()

    def poll_once(self) -> int:
        """Check every tracked path once. Returns how many triggered an upload."""
        triggered = 0
        for path in self._tracker.paths():
            try:
                if self._tracker.check_for_turn_complete(path):
                    triggered += 1
            except Exception:
                logger.exception("Poll check failed: %s", path)
        return triggered

    def _record(self, kind: str, path: str, reason: Optional[str] = None) -> None:
        if self._record_event is not None:
            self._record_event(kind, path, reason)

    def handle_event(self, kind: str, path: str) -> None:
        """Apply one change signal. Runs on the event loop thread."""
        if not self._tracker.is_transcript(path):
            return
        logger.debug("Watcher event: %s", kind, extra={"meta": {"path": path}})
        try:
            if kind == "create":
                self._record("create", path)
                if self._tracker.get(path) is not None:
                    # Renamed over a tracked transcript: keep its baseline marker.
                    self._tracker.check_for_turn_complete(path)
                else:
                    self._tracker.track(path, is_fresh=True)
            elif kind == "update":
                self._record("update", path, "file_changed")
                self._tracker.check_for_turn_complete(path)
            elif kind == "delete":
                self._tracker.untrack(path)
                self._record("delete", path)
        except Exception:
            logger.exception("Failed to handle %s event: %s", kind, path)

    def stop(self) -> None:
        timer = self._state.poll_timer
        self._state.poll_timer = None
        if timer is not None:
            timer.cancel()
        observer = self._observer
        self._observer = None
        self._state.watching = False
        if observer is not None:
            try:
                observer.stop()
                observer.join(timeout=2.0)
            except Exception as e:
                logger.warning("Failed to stop watcher cleanly", extra={"meta": {"error": str(e)}})
