from __future__ import annotations

import json
import logging
import socket
import threading
from concurrent.futures import CancelledError
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Tuple

from pydantic import ValidationError

from ..contracts.v1 import CHANNEL_NAME, IpcRequest, IpcResponse
from ..paths import ensure_home
from .loop import ControlLoop

logger = logging.getLogger("pomo.ipc")

CONNECT_TIMEOUT_S = 0.15
REPLY_TIMEOUT_S = 5.0
EXECUTE_TIMEOUT_S = 2.0
ACCEPT_POLL_S = 1.0
ERROR_BACKOFF_S = 0.25
MAX_LINE_BYTES = 1_000_000

RequestHandler = Callable[[IpcRequest], Tuple[IpcResponse, bool]]


@dataclass
class DaemonPaths:
    home: Path

    @property
    def daemon_dir(self) -> Path:
        return self.home / "daemon"

    @property
    def sock_path(self) -> Path:
        return self.daemon_dir / f"{CHANNEL_NAME}.sock"

    @property
    def lock_path(self) -> Path:
        return self.daemon_dir / "pomodoro.lock"

    @property
    def pid_path(self) -> Path:
        return self.daemon_dir / "pomod.pid"

    @property
    def log_path(self) -> Path:
        return self.daemon_dir / "pomod.log"


def default_paths(override: Optional[str] = None) -> DaemonPaths:
    return DaemonPaths(home=ensure_home(override))


def _recv_line(conn: socket.socket) -> bytes:
    buf = b""
    while b"\n" not in buf:
        chunk = conn.recv(65536)
        if not chunk:
            break
        buf += chunk
        if len(buf) > MAX_LINE_BYTES:
            break
    return buf.split(b"\n", 1)[0]


def _send_line(conn: socket.socket, obj: dict) -> None:
    conn.sendall((json.dumps(obj, ensure_ascii=False) + "\n").encode("utf-8"))


def parse_request(line: bytes) -> Tuple[Optional[IpcRequest], Optional[IpcResponse]]:
    """Decode one request line; on failure return the response to send instead."""
    text = line.decode("utf-8", errors="replace").strip()
    if not text:
        return None, IpcResponse(ok=False, message="Empty request.")
    try:
        raw = json.loads(text)
    except ValueError:
        return None, IpcResponse(ok=False, message="Invalid JSON request.")
    if not isinstance(raw, dict):
        return None, IpcResponse(ok=False, message="Invalid JSON request.")
    try:
        req = IpcRequest.model_validate(raw)
    except ValidationError:
        return None, IpcResponse(ok=False, message="Invalid JSON request.")
    if not (req.command or "").strip():
        return None, IpcResponse(ok=False, message="Missing command.")
    return req, None


class IpcServer:
    """Accept loop on the well-known socket, one connection at a time.

    Commands are executed on the `ControlLoop` thread; this thread only waits
    for the next connection and for the bounded reply.
    """

    def __init__(
        self,
        sock_path: Path,
        *,
        loop: ControlLoop,
        handler: RequestHandler,
        execute_timeout_s: float = EXECUTE_TIMEOUT_S,
    ):
        self.sock_path = sock_path
        self._loop = loop
        self._handler = handler
        self._execute_timeout_s = execute_timeout_s
        self._stop = threading.Event()
        self._ready = threading.Event()

    def stop(self) -> None:
        self._stop.set()

    def wait_ready(self, timeout_s: float = 5.0) -> bool:
        return self._ready.wait(timeout_s)

    def _execute(self, req: IpcRequest) -> Tuple[IpcResponse, bool]:
        try:
            return self._loop.call(lambda: self._handler(req), timeout_s=self._execute_timeout_s)
        except FutureTimeoutError:
            logger.warning("command timed out", extra={"command": req.command})
            return IpcResponse(ok=False, message="Pomodoro command timed out."), False
        except CancelledError:
            return IpcResponse(ok=False, message="Pomodoro is shutting down."), False
        except Exception as e:
            return IpcResponse(ok=False, message=str(e) or type(e).__name__), False

    def handle_connection(self, conn: socket.socket) -> bool:
        """Serve one request on `conn`; True when the resident should exit."""
        conn.settimeout(REPLY_TIMEOUT_S)
        req, early = parse_request(_recv_line(conn))
        should_exit = False
        if req is None:
            resp = early or IpcResponse(ok=False, message="Invalid JSON request.")
        else:
            resp, should_exit = self._execute(req)
        try:
            _send_line(conn, resp.to_wire())
        except OSError:
            # Client went away before the reply; the command itself already ran.
            pass
        return should_exit

    def _bind(self) -> socket.socket:
        self.sock_path.parent.mkdir(parents=True, exist_ok=True)
        self.sock_path.unlink(missing_ok=True)
        s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            s.bind(str(self.sock_path))
            s.listen(8)
            s.settimeout(ACCEPT_POLL_S)
        except OSError:
            s.close()
            raise
        return s

    def serve_forever(self) -> None:
        listener: Optional[socket.socket] = None
        try:
            while not self._stop.is_set():
                try:
                    if listener is None:
                        listener = self._bind()
                        self._ready.set()
                        logger.info("listening on %s", self.sock_path)
                    conn, _ = listener.accept()
                except socket.timeout:
                    # A listener whose socket file was removed is unreachable; rebind.
                    if listener is not None and not self.sock_path.exists():
                        logger.warning("socket file %s disappeared, rebinding", self.sock_path)
                        listener.close()
                        listener = None
                    continue
                except OSError as e:
                    logger.warning("accept failed, retrying: %s", e)
                    if listener is not None and not self.sock_path.exists():
                        listener.close()
                        listener = None
                    self._stop.wait(ERROR_BACKOFF_S)
                    continue

                with conn:
                    try:
                        should_exit = self.handle_connection(conn)
                    except OSError as e:
                        logger.warning("connection failed: %s", e)
                        continue
                if should_exit:
                    self._stop.set()
                    self._loop.stop()
        finally:
            if listener is not None:
                listener.close()
            self.sock_path.unlink(missing_ok=True)
            logger.info("ipc server stopped")


def send_request(
    req: IpcRequest,
    *,
    paths: Optional[DaemonPaths] = None,
    connect_timeout_s: float = CONNECT_TIMEOUT_S,
    reply_timeout_s: float = REPLY_TIMEOUT_S,
) -> Optional[IpcResponse]:
    """Deliver one request to the resident.

    Returns None when the resident is not reachable (no socket, refused,
    connect timeout). A reachable resident that sends nothing usable yields an
    `ok=False` response.
    """
    p = paths or default_paths()
    try:
        s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    except OSError:
        return None
    with s:
        try:
            s.settimeout(connect_timeout_s)
            s.connect(str(p.sock_path))
        except OSError:
            return None
        try:
            s.settimeout(reply_timeout_s)
            _send_line(s, req.to_wire())
            line = _recv_line(s)
        except OSError:
            return None

    text = line.decode("utf-8", errors="replace").strip()
    if not text:
        return IpcResponse(ok=False, message="No response.")
    try:
        return IpcResponse.model_validate_json(text)
    except ValidationError:
        return IpcResponse(ok=False, message="Invalid response.")


def try_send(req: IpcRequest, *, paths: Optional[DaemonPaths] = None) -> Tuple[bool, IpcResponse]:
    resp = send_request(req, paths=paths)
    if resp is None:
        return False, IpcResponse(ok=False, message="Not running.")
    return resp.ok, resp
