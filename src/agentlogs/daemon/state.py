from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..contracts.v1 import LastEvent
from ..util.time import now_ms


@dataclass
class TrackedSession:
    path: str
    last_mtime_ns: int
    last_turn_marker: Optional[str] = None
    # Discovered through a live creation event during this run (not the startup scan).
    is_fresh: bool = False


@dataclass
class Connection:
    id: str
    transport: Any = None


@dataclass
class ServiceState:
    """Everything the service mutates. Owned by the event loop thread only."""
    sessions: Dict[str, TrackedSession] = field(default_factory=dict)
    connections: Dict[str, Connection] = field(default_factory=dict)
    shutdown_timer: Optional[asyncio.TimerHandle] = None
    poll_timer: Optional[asyncio.TimerHandle] = None
    watching: bool = False
    last_event: Optional[LastEvent] = None
    start_time_ms: int = field(default_factory=now_ms)

    def uptime_ms(self) -> int:
        return max(0, now_ms() - self.start_time_ms)
