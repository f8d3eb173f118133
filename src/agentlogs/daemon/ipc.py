"""Local IPC over a Unix socket.

Each connection carries newline-delimited JSON messages
(`{"type": ..., "id"?: ..., "data"?: ...}`) in both directions. Session
clients send `connect` to register and keep the socket open; closing it (or
sending `disconnect`) unregisters them. `status` is answered with a
`status_response` on the same connection; `shutdown` stops the service.

The server side runs on the service event loop. The client side is plain
blocking sockets for short-lived CLI processes.
"""
from __future__ import annotations

import asyncio
import logging
import socket
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional, Set

from pydantic import ValidationError

from ..contracts.v1 import (
    ConnectMessage,
    DisconnectMessage,
    ShutdownMessage,
    StatusMessage,
    StatusResponse,
    StatusResponseMessage,
    encode_ipc_message,
    parse_ipc_line,
)
from ..util.fs import unlink_quiet

logger = logging.getLogger("agentlogs.ipc")

MAX_LINE_BYTES = 2_000_000
CONNECT_TIMEOUT_S = 3.0
RESPONSE_TIMEOUT_S = 5.0


class LineBuffer:
    """Accumulates bytes and yields complete lines; the trailing fragment is kept."""

    def __init__(self, max_bytes: int = MAX_LINE_BYTES):
        self._buf = b""
        self._max_bytes = max_bytes

    @property
    def pending(self) -> bytes:
        return self._buf

    def feed(self, chunk: bytes) -> List[bytes]:
        self._buf += chunk
        parts = self._buf.split(b"\n")
        self._buf = parts.pop()
        if len(self._buf) > self._max_bytes:
            # An unterminated line this large is never going to parse.
            self._buf = b""
        return [p for p in parts if p.strip()]


@dataclass
class IPCHandlers:
    on_connect: Callable[[str, Any], None]
    on_disconnect: Callable[[str], None]
    on_status: Callable[[], StatusResponse]
    on_shutdown: Callable[[], None]
    is_registered: Callable[[str], bool] = lambda _id: False


class ClientSession:
    """Per-connection protocol state: Connecting -> Registered -> Removed."""

    def __init__(self, writer: Any):
        self.writer = writer
        self.conn_id: Optional[str] = None
        self.removed = False

    @property
    def registered(self) -> bool:
        return self.conn_id is not None and not self.removed

    def send(self, msg: Any) -> None:
        try:
            self.writer.write(encode_ipc_message(msg))
        except (ConnectionError, OSError, RuntimeError) as e:
            logger.debug("Failed to write to client", extra={"meta": {"error": str(e)}})


class IPCServer:
    def __init__(self, socket_path: Path, handlers: IPCHandlers):
        self._socket_path = socket_path
        self._handlers = handlers
        self._server: Optional[asyncio.AbstractServer] = None
        self._closing: Optional[asyncio.AbstractServer] = None
        self._sessions: Set[ClientSession] = set()

    @property
    def socket_path(self) -> Path:
        return self._socket_path

    async def start(self) -> None:
        self._socket_path.parent.mkdir(parents=True, exist_ok=True)
        unlink_quiet(self._socket_path)
        self._server = await asyncio.start_unix_server(self._handle_client, path=str(self._socket_path))
        logger.info("IPC server started", extra={"meta": {"socket": str(self._socket_path)}})

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        session = ClientSession(writer)
        self._sessions.add(session)
        buf = LineBuffer()
        try:
            while True:
                chunk = await reader.read(65536)
                if not chunk:
                    break
                for line in buf.feed(chunk):
                    self.dispatch_line(session, line)
        except (ConnectionError, OSError) as e:
            logger.debug("Client connection error", extra={"meta": {"id": session.conn_id, "error": str(e)}})
        finally:
            self._sessions.discard(session)
            self.release(session)
            try:
                writer.close()
            except (ConnectionError, OSError, RuntimeError):
                pass

    def release(self, session: ClientSession) -> None:
        """Channel closed or errored: same as an explicit disconnect."""
        conn_id = session.conn_id if session.registered else None
        session.removed = True
        if conn_id is not None:
            self._handlers.on_disconnect(conn_id)

    def dispatch_line(self, session: ClientSession, line: bytes | str) -> bool:
        """Decode and handle one line. Returns False if the line was discarded."""
        try:
            msg = parse_ipc_line(line)
        except ValidationError:
            return False

        try:
            if isinstance(msg, ConnectMessage):
                self._on_connect(session, msg)
            elif isinstance(msg, DisconnectMessage):
                self.release(session)
            elif isinstance(msg, StatusMessage):
                status = self._handlers.on_status()
                session.send(StatusResponseMessage(data=status.model_dump(mode="json")))
            elif isinstance(msg, ShutdownMessage):
                logger.info("Shutdown requested via IPC")
                self._handlers.on_shutdown()
            elif isinstance(msg, StatusResponseMessage):
                # Server-to-client only.
                pass
        except Exception:
            logger.exception("IPC handler failed", extra={"meta": {"type": getattr(msg, "type", "")}})
        return True

    def _on_connect(self, session: ClientSession, msg: ConnectMessage) -> None:
        if session.conn_id is not None or session.removed:
            return
        conn_id = (msg.id or "").strip() or uuid.uuid4().hex
        if self._handlers.is_registered(conn_id):
            conn_id = f"{conn_id}-{uuid.uuid4().hex[:8]}"
        session.conn_id = conn_id
        self._handlers.on_connect(conn_id, session.writer)

    def close(self) -> None:
        server = self._server
        self._server = None
        if server is not None:
            server.close()
            self._closing = server
        for session in list(self._sessions):
            session.removed = True
            try:
                session.writer.close()
            except (ConnectionError, OSError, RuntimeError):
                pass
        unlink_quiet(self._socket_path)

    async def wait_closed(self, timeout: float = 1.0) -> None:
        server = self._closing
        self._closing = None
        if server is None:
            return
        try:
            await asyncio.wait_for(server.wait_closed(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.debug("IPC server did not close within %.1fs", timeout)


# ---------------------------------------------------------------------------
# Client side
# ---------------------------------------------------------------------------


class ServiceUnavailableError(RuntimeError):
    """The service socket could not be reached."""


class ServiceClient:
    def __init__(self, socket_path: Path, *, connect_timeout: float = CONNECT_TIMEOUT_S):
        self._socket_path = socket_path
        self._connect_timeout = connect_timeout
        self._sock: Optional[socket.socket] = None
        self._buf = LineBuffer()

    def connect(self) -> "ServiceClient":
        s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        s.settimeout(self._connect_timeout)
        try:
            s.connect(str(self._socket_path))
        except OSError as e:
            s.close()
            raise ServiceUnavailableError(f"service unavailable at {self._socket_path}: {e}") from e
        self._sock = s
        return self

    def __enter__(self) -> "ServiceClient":
        if self._sock is None:
            self.connect()
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()

    @property
    def sock(self) -> socket.socket:
        if self._sock is None:
            raise ServiceUnavailableError("not connected")
        return self._sock

    def send(self, msg: Any) -> None:
        self.sock.sendall(encode_ipc_message(msg))

    def wait_for(self, msg_type: str, timeout: float = RESPONSE_TIMEOUT_S) -> Any:
        """Read until a message of `msg_type` arrives; other messages are skipped."""
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError(f"timeout waiting for {msg_type}")
            self.sock.settimeout(remaining)
            try:
                chunk = self.sock.recv(65536)
            except socket.timeout as e:
                raise TimeoutError(f"timeout waiting for {msg_type}") from e
            if not chunk:
                raise ServiceUnavailableError("service closed the connection")
            for line in self._buf.feed(chunk):
                try:
                    msg = parse_ipc_line(line)
                except ValidationError:
                    continue
                if msg.type == msg_type:
                    return msg

    def register(self, conn_id: Optional[str] = None) -> None:
        self.send(ConnectMessage(id=conn_id))

    def unregister(self) -> None:
        self.send(DisconnectMessage())

    def status(self, timeout: float = RESPONSE_TIMEOUT_S) -> StatusResponse:
        self.send(StatusMessage())
        msg = self.wait_for("status_response", timeout=timeout)
        return StatusResponse.model_validate(msg.data or {})

    def shutdown(self) -> None:
        self.send(ShutdownMessage())

    def close(self) -> None:
        s = self._sock
        self._sock = None
        if s is not None:
            try:
                s.close()
            except OSError:
                pass


def query_status(socket_path: Path, *, timeout: float = RESPONSE_TIMEOUT_S) -> StatusResponse:
    with ServiceClient(socket_path) as client:
        return client.status(timeout=timeout)


def request_shutdown(socket_path: Path) -> None:
    with ServiceClient(socket_path) as client:
        client.shutdown()


def is_service_alive(socket_path: Path, *, timeout: float = 0.5) -> bool:
    if not socket_path.exists():
        return False
    try:
        with ServiceClient(socket_path, connect_timeout=timeout) as client:
            client.status(timeout=timeout)
        return True
    except (ServiceUnavailableError, TimeoutError, OSError, ValueError):
        return False
