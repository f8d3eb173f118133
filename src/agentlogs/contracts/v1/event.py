from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict


WatcherEventType = Literal[
    "create",
    "update",
    "delete",
    "turn_complete",
    "upload_success",
    "upload_failed",
    "upload_error",
]


class WatcherEvent(BaseModel):
    """One line of the append-only watcher event log."""
    type: WatcherEventType
    path: str
    reason: Optional[str] = None
    timestamp: int

    model_config = ConfigDict(extra="forbid")
