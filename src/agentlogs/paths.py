from __future__ import annotations

import os
from pathlib import Path


def agentlogs_home() -> Path:
    env = os.environ.get("AGENTLOGS_HOME", "").strip()
    if env:
        return Path(env).expanduser().resolve()
    return (Path.home() / ".agentlogs").resolve()


def default_watch_dir() -> Path:
    return Path.home() / ".codex" / "sessions"
