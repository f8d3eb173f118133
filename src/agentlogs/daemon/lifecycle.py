from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from .state import Connection, ServiceState

logger = logging.getLogger("agentlogs.lifecycle")


class LifecycleManager:
    """Keeps the service alive while clients are registered.

    Once the last connection drops a single grace timer starts; a new
    registration cancels it. When it fires with the table still empty,
    `on_expire` runs (cleanup + exit).
    """

    def __init__(
        self,
        state: ServiceState,
        *,
        grace_period_s: float,
        on_expire: Callable[[], None],
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self._state = state
        self._grace_period_s = float(grace_period_s)
        self._on_expire = on_expire
        self._loop = loop
        self._closed = False

    @property
    def timer_active(self) -> bool:
        return self._state.shutdown_timer is not None

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def on_connect(self, conn_id: str, transport: Any = None) -> None:
        self._state.connections[conn_id] = Connection(id=conn_id, transport=transport)
        logger.info("Connection added: %s", conn_id, extra={"meta": {"total": len(self._state.connections)}})
        if self._state.shutdown_timer is not None:
            self.cancel()
            logger.info("Shutdown cancelled - new connection")

    def on_disconnect(self, conn_id: str) -> None:
        if self._state.connections.pop(conn_id, None) is None:
            return
        logger.info("Connection removed: %s", conn_id, extra={"meta": {"total": len(self._state.connections)}})
        self.arm()

    def arm(self) -> bool:
        """Start the grace timer if nobody is connected. Returns True if a timer was started."""
        if self._closed or self._state.connections or self._state.shutdown_timer is not None:
            return False
        logger.info(
            "No connections remaining, starting grace period",
            extra={"meta": {"gracePeriodMs": int(self._grace_period_s * 1000)}},
        )
        self._state.shutdown_timer = self._get_loop().call_later(self._grace_period_s, self._fire)
        return True

    def cancel(self) -> None:
        timer = self._state.shutdown_timer
        self._state.shutdown_timer = None
        if timer is not None:
            timer.cancel()

    def close(self) -> None:
        """Cancel any timer and refuse to start new ones (used during cleanup)."""
        self._closed = True
        self.cancel()

    def _fire(self) -> None:
        self._state.shutdown_timer = None
        if self._state.connections:
            logger.info("Shutdown aborted - new connections appeared")
            return
        logger.info("Grace period elapsed, shutting down")
        self._on_expire()
