from __future__ import annotations

import argparse
import os
import signal
import subprocess
import sys
import time
import uuid
from pathlib import Path
from typing import Any, Optional

from .daemon.ipc import ServiceClient, ServiceUnavailableError, is_service_alive, query_status, request_shutdown
from .daemon.server import describe_pid_state, pid_alive, read_pid, serve_forever
from .kernel.events import follow, format_event_line
from .kernel.settings import ServiceSettings, load_settings
from .util.fs import read_last_lines


def _spawn_service(settings: ServiceSettings) -> int:
    settings.home.mkdir(parents=True, exist_ok=True)
    settings.log_path.parent.mkdir(parents=True, exist_ok=True)
    env = os.environ.copy()
    env["AGENTLOGS_HOME"] = str(settings.home)
    with settings.log_path.open("a", encoding="utf-8") as log_f:
        p = subprocess.Popen(
            [sys.executable, "-m", "agentlogs.daemon_main", "run"],
            stdout=log_f,
            stderr=log_f,
            stdin=subprocess.DEVNULL,
            env=env,
            start_new_session=True,
            cwd=str(Path.home()),
        )
    return int(p.pid)


def ensure_service_running(settings: ServiceSettings, *, wait_s: float = 5.0) -> bool:
    """Start the service if it is not answering, then wait for the socket."""
    if is_service_alive(settings.socket_path):
        return True
    try:
        _spawn_service(settings)
    except OSError:
        return False
    deadline = time.monotonic() + wait_s
    while time.monotonic() < deadline:
        time.sleep(0.1)
        if is_service_alive(settings.socket_path):
            return True
    return False


def cmd_run(settings: ServiceSettings, args: argparse.Namespace) -> int:
    return int(serve_forever(settings))


def cmd_start(settings: ServiceSettings, args: argparse.Namespace) -> int:
    if is_service_alive(settings.socket_path):
        print(f"Service already running (PID: {read_pid(settings.pid_path)})")
        return 0
    pid = _spawn_service(settings)
    print(f"Service starting (PID: {pid})...")
    for _ in range(50):
        if is_service_alive(settings.socket_path):
            print("Service ready")
            return 0
        time.sleep(0.1)
    print("Service failed to start. Check logs:", file=sys.stderr)
    print(f"  tail -f {settings.log_path}", file=sys.stderr)
    return 1


def cmd_stop(settings: ServiceSettings, args: argparse.Namespace) -> int:
    pid = read_pid(settings.pid_path)
    try:
        request_shutdown(settings.socket_path)
        print("Shutdown signal sent")
    except ServiceUnavailableError:
        if not pid_alive(pid):
            print("Service is not running")
            return 0
    else:
        time.sleep(1.0)
        if not pid_alive(pid):
            return 0
    try:
        os.kill(pid, signal.SIGTERM)
        print(f"Sent SIGTERM to PID {pid}")
    except OSError as e:
        print(f"Failed to signal PID {pid}: {e}", file=sys.stderr)
        return 1
    return 0


def cmd_status(settings: ServiceSettings, args: argparse.Namespace) -> int:
    pid_state = describe_pid_state(settings)
    try:
        status = query_status(settings.socket_path)
    except (ServiceUnavailableError, TimeoutError, ValueError):
        if pid_state["alive"]:
            print(f"Service: not responding (PID {pid_state['pid']} alive, socket unreachable; stale?)")
        elif pid_state["pid"]:
            print(f"Service: not running (stale PID file {pid_state['pid_file']})")
        else:
            print("Service: not running")
        return 1

    print(f"Service: running (PID: {pid_state['pid'] or '?'})")
    print(f"Connections: {status.connections}")
    print(f"Watching: {str(status.watching).lower()}")
    print(f"Uptime: {round(status.uptime / 1000)}s")
    if status.lastEvent is not None:
        ago = round((time.time() * 1000 - status.lastEvent.timestamp) / 1000)
        print(f"Last event: {status.lastEvent.type} ({ago}s ago)")
        print(f"  Path: {status.lastEvent.path}")
    return 0


def cmd_logs(settings: ServiceSettings, args: argparse.Namespace) -> int:
    path = settings.events_path
    if not path.exists() and not args.follow:
        print("No watcher logs yet")
        print(f"Log file: {path}")
        return 0
    for line in read_last_lines(path, int(args.lines)):
        print(format_event_line(line))
    if not args.follow:
        return 0
    try:
        for line in follow(path):
            print(format_event_line(line), flush=True)
    except KeyboardInterrupt:
        pass
    return 0


def cmd_hold(settings: ServiceSettings, args: argparse.Namespace) -> int:
    """Register as a session client and stay connected until interrupted."""
    if not ensure_service_running(settings):
        print("Service unavailable", file=sys.stderr)
        return 1
    conn_id = str(args.id or "").strip() or f"cli-{uuid.uuid4().hex[:12]}"

    def _terminate(signum: int, frame: Any) -> None:
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, _terminate)
    client = ServiceClient(settings.socket_path)
    try:
        client.connect()
        client.register(conn_id)
        print(f"Registered as {conn_id}", flush=True)
        client.sock.settimeout(None)
        while client.sock.recv(65536):
            pass
        print("Service closed the connection")
    except KeyboardInterrupt:
        try:
            client.unregister()
        except OSError:
            pass
    except ServiceUnavailableError as e:
        print(str(e), file=sys.stderr)
        return 1
    finally:
        client.close()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="agentlogsd", description="agentlogs transcript watcher service")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("run", help="Run the service in the foreground")
    sub.add_parser("start", help="Start the service in the background")
    sub.add_parser("stop", help="Stop the service")
    sub.add_parser("status", help="Show service status")
    p_logs = sub.add_parser("logs", help="Show the watcher event log")
    p_logs.add_argument("-n", "--lines", type=int, default=20, help="Number of lines to show (default: 20)")
    p_logs.add_argument("-f", "--follow", action="store_true", help="Keep printing new events")
    p_hold = sub.add_parser("hold", help="Register a session client and stay connected")
    p_hold.add_argument("--id", default="", help="Connection id (default: generated)")

    args = parser.parse_args(argv)
    settings = load_settings()

    handlers = {
        "run": cmd_run,
        "start": cmd_start,
        "stop": cmd_stop,
        "status": cmd_status,
        "logs": cmd_logs,
        "hold": cmd_hold,
    }
    return int(handlers[args.cmd](settings, args))


if __name__ == "__main__":
    raise SystemExit(main())
