from __future__ import annotations

import json
import os
from dataclasses import replace
from pathlib import Path
from typing import Any, List

from agentlogs.daemon.upload import TargetResult, Uploader, UploadResult
from agentlogs.kernel.settings import ServiceSettings


def meta_line(session_id: str = "sess-1") -> str:
    return json.dumps({"timestamp": "2025-01-01T00:00:00.000Z", "type": "session_meta", "payload": {"id": session_id}}) + "\n"


def user_line(text: str = "hi") -> str:
    return json.dumps({"timestamp": "2025-01-01T00:00:01.000Z", "type": "event_msg", "payload": {"type": "user_message", "message": text}}) + "\n"


def agent_line(ts: str) -> str:
    return json.dumps({"timestamp": ts, "type": "event_msg", "payload": {"type": "agent_message", "message": "done"}}) + "\n"


def bump_mtime(path: Path, seconds: float = 1.0) -> None:
    st = os.stat(path)
    t = st.st_mtime_ns + int(seconds * 1_000_000_000)
    os.utime(path, ns=(t, t))


def set_age(path: Path, age_seconds: float, now: float) -> None:
    t = int((now - age_seconds) * 1_000_000_000)
    os.utime(path, ns=(t, t))


def make_settings(home: Path, **overrides: Any):
    watch = home / "sessions"
    watch.mkdir(parents=True, exist_ok=True)
    s = ServiceSettings(
        home=home,
        watch_dir=watch,
        socket_path=home / "service.sock",
        pid_path=home / "service.pid",
        log_path=home / "service.log",
        events_path=home / "watcher-events.log",
        grace_period_s=60.0,
        poll_interval_s=60.0,
        use_watcher=False,
    )
    return replace(s, **overrides) if overrides else s


class RecordingUploader(Uploader):
    """Uploader double that records every path it is asked to upload."""

    def __init__(self, success: bool = True, raise_error: bool = False):
        self.calls: List[str] = []
        self._success = success
        self._raise = raise_error

    async def upload(self, path: str) -> UploadResult:
        self.calls.append(path)
        if self._raise:
            raise RuntimeError("collector unreachable")
        return UploadResult.from_results(
            [TargetResult(target="fake", success=self._success, error=None if self._success else "rejected")]
        )
