from __future__ import annotations

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import Any, Optional

from .. import __version__
from ..contracts.v1 import LastEvent, StatusResponse
from ..kernel.events import append_event
from ..kernel.settings import ServiceSettings, load_settings
from ..kernel.transcript import MarkerReader, last_turn_marker
from ..util.fs import atomic_write_text, unlink_quiet
from ..util.obslog import setup_service_logging
from .ipc import IPCHandlers, IPCServer, is_service_alive
from .lifecycle import LifecycleManager
from .state import ServiceState
from .tracker import SessionTracker
from .upload import TargetUploader, Uploader, UploadTrigger
from .watcher import ChangeSource

logger = logging.getLogger("agentlogs.server")


def write_pid(pid_path: Path) -> None:
    pid_path.parent.mkdir(parents=True, exist_ok=True)
    atomic_write_text(pid_path, str(os.getpid()) + "\n")


def read_pid(pid_path: Path) -> int:
    try:
        txt = pid_path.read_text(encoding="utf-8").strip()
        return int(txt) if txt.isdigit() else 0
    except OSError:
        return 0


def pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False


class ServiceSupervisor:
    """Owns ServiceState and every process-wide resource.

    Startup: PID file, IPC socket, startup scan, change sources, signal
    handlers, initial grace timer. Shutdown goes through `cleanup()`, which is
    idempotent and shared by grace expiry, the `shutdown` message and signals.
    """

    def __init__(
        self,
        settings: ServiceSettings,
        *,
        uploader: Optional[Uploader] = None,
        marker_reader: MarkerReader = last_turn_marker,
        install_signals: bool = True,
    ):
        self.settings = settings
        self.state = ServiceState()
        self._install_signals = install_signals
        self._installed_signals: list[int] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._exit: Optional[asyncio.Future] = None
        self._cleaned = False

        self.upload_trigger = UploadTrigger(
            uploader if uploader is not None else TargetUploader(settings.upload_targets),
            record_event=self.record_event,
        )
        self.tracker = SessionTracker(
            self.state,
            on_turn_complete=self._on_turn_complete,
            extension=settings.extension,
            marker_reader=marker_reader,
        )
        self.lifecycle = LifecycleManager(
            self.state,
            grace_period_s=settings.grace_period_s,
            on_expire=lambda: self.request_exit(0, "grace period elapsed"),
        )
        self.change_source = ChangeSource(
            self.state,
            self.tracker,
            root=settings.watch_dir,
            extension=settings.extension,
            poll_interval_s=settings.poll_interval_s,
            use_watcher=settings.use_watcher,
            record_event=self.record_event,
        )
        self.ipc = IPCServer(
            settings.socket_path,
            IPCHandlers(
                on_connect=self.lifecycle.on_connect,
                on_disconnect=self.lifecycle.on_disconnect,
                on_status=self.status,
                on_shutdown=lambda: self.request_exit(0, "shutdown requested"),
                is_registered=lambda conn_id: conn_id in self.state.connections,
            ),
        )

    @property
    def cleaned_up(self) -> bool:
        return self._cleaned

    def record_event(self, type: str, path: str, reason: Optional[str] = None) -> None:
        ev = append_event(
            self.settings.events_path,
            type=type,
            path=path,
            reason=reason,
            lock_path=self.settings.events_lock_path,
        )
        if ev is not None:
            self.state.last_event = LastEvent(type=ev.type, path=ev.path, timestamp=ev.timestamp)

    def status(self) -> StatusResponse:
        return StatusResponse(
            connections=len(self.state.connections),
            watching=self.state.watching,
            lastEvent=self.state.last_event,
            uptime=self.state.uptime_ms(),
        )

    def _on_turn_complete(self, path: str, marker: str) -> None:
        self.record_event("turn_complete", path, "agent_message")
        self.upload_trigger.trigger(path)

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._exit = self._loop.create_future()
        s = self.settings
        logger.info("Starting agentlogs service", extra={"meta": {"version": __version__, "pid": os.getpid()}})

        write_pid(s.pid_path)
        logger.info("PID file written: %s", s.pid_path, extra={"meta": {"pid": os.getpid()}})

        await self.ipc.start()

        self.tracker.scan_existing(s.watch_dir, s.max_file_age_s)
        self.change_source.start(self._loop)

        if self._install_signals:
            self._setup_signals()

        # Nobody may ever connect; treat startup like the last client leaving.
        self.lifecycle.arm()
        logger.info("Service ready")

    def _setup_signals(self) -> None:
        assert self._loop is not None
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                self._loop.add_signal_handler(sig, self._on_signal, sig)
                self._installed_signals.append(sig)
            except (NotImplementedError, RuntimeError, ValueError):
                # No loop signal support (Windows, non-main thread).
                signal.signal(sig, lambda signum, frame: self._loop.call_soon_threadsafe(self._on_signal, signum))

    def _on_signal(self, signum: int) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        logger.info("Received %s", name)
        self.request_exit(0, f"signal {name}")

    def request_exit(self, code: int = 0, reason: str = "") -> None:
        if reason:
            logger.info("Exiting: %s", reason)
        self.cleanup()
        if self._exit is not None and not self._exit.done():
            self._exit.set_result(code)

    def cleanup(self) -> None:
        if self._cleaned:
            return
        self._cleaned = True
        logger.info("Cleaning up...")

        self.lifecycle.close()
        self.change_source.stop()
        self.ipc.close()

        if self._loop is not None:
            for sig in self._installed_signals:
                try:
                    self._loop.remove_signal_handler(sig)
                except (NotImplementedError, RuntimeError, ValueError):
                    pass
        self._installed_signals.clear()

        unlink_quiet(self.settings.socket_path)
        unlink_quiet(self.settings.pid_path)
        logger.info("Cleanup complete")

    async def run(self) -> int:
        """Start, then wait until something requests an exit. Returns the exit status."""
        try:
            await self.start()
        except Exception as e:
            logger.error("Service failed to start", extra={"meta": {"error": str(e)}}, exc_info=True)
            self.cleanup()
            return 1
        assert self._exit is not None
        code = await self._exit
        await self.ipc.wait_closed()
        return int(code)


def serve_forever(settings: Optional[ServiceSettings] = None, *, uploader: Optional[Uploader] = None) -> int:
    s = settings or load_settings()
    s.home.mkdir(parents=True, exist_ok=True)
    setup_service_logging(component="service", log_path=s.log_path, level=s.log_level)

    if is_service_alive(s.socket_path):
        logger.info("Service already running", extra={"meta": {"socket": str(s.socket_path)}})
        return 0
    if unlink_quiet(s.socket_path):
        logger.info("Removed stale socket: %s", s.socket_path)

    supervisor = ServiceSupervisor(s, uploader=uploader)
    return asyncio.run(supervisor.run())


def describe_pid_state(settings: ServiceSettings) -> dict[str, Any]:
    """PID-file view used by the CLI: is there a pid, and is it alive?"""
    pid = read_pid(settings.pid_path)
    return {"pid": pid, "alive": pid_alive(pid), "pid_file": str(settings.pid_path)}
