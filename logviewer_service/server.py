from __future__ import annotations

import json
import logging
import os
import socket
import socketserver
import stat
import struct
import threading
from http.server import BaseHTTPRequestHandler

from logviewer_service.errors import AuthorizationDenied, SessionBusy
from logviewer_service.service import OPERATIONS, LogViewerService


logger = logging.getLogger(__name__)

SOCKET_MODE = 0o666
PEERCRED_FORMAT = "3i"
# requests are read before the caller is authorized
MAX_BODY_BYTES = 1024 * 1024


def peer_pid(connection: socket.socket) -> int | None:
    """PID of the process on the other end of a Unix socket (SO_PEERCRED)."""
    try:
        creds = connection.getsockopt(socket.SOL_SOCKET, socket.SO_PEERCRED, struct.calcsize(PEERCRED_FORMAT))
    except (OSError, AttributeError):
        return None
    pid, _uid, _gid = struct.unpack(PEERCRED_FORMAT, creds)
    return pid or None


class ServiceHandler(BaseHTTPRequestHandler):
    server: "ThreadingUnixHTTPServer"

    def _json_response(self, payload: dict, status_code: int = 200) -> None:
        body = json.dumps(payload).encode("utf-8")
        self.send_response(status_code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _read_json_body(self) -> tuple[dict | None, str | None]:
        try:
            length = int(self.headers.get("Content-Length", "0"))
        except ValueError:
            return None, "invalid content length"
        if length <= 0:
            return {}, None
        if length > MAX_BODY_BYTES:
            return None, "request body too large"
        try:
            payload = json.loads(self.rfile.read(length))
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None, "invalid json"
        if not isinstance(payload, dict):
            return None, "invalid json"
        return payload, None

    def do_POST(self) -> None:
        name = self.path.lstrip("/")
        operation = OPERATIONS.get(name)
        if operation is None:
            self._json_response({"error": "not found"}, 404)
            return
        payload, err = self._read_json_body()
        if err:
            self._json_response({"error": err}, 400)
            return
        try:
            args = operation.parse_args(payload)
        except ValueError as exc:
            self._json_response({"error": str(exc)}, 400)
            return

        service = self.server.service
        method = getattr(service, operation.method)
        try:
            if operation.gated:
                result = method(peer_pid(self.connection), *args)
            else:
                result = method(*args)
        except AuthorizationDenied as exc:
            self._json_response({"error": "unauthorized", "message": str(exc), "pid": exc.pid, "path": exc.path}, 403)
            return
        except SessionBusy as exc:
            self._json_response({"error": "busy", "message": str(exc)}, 409)
            return
        except Exception:
            logger.exception("%s failed", name)
            self._json_response({"error": "internal error"}, 500)
            return

        self._json_response({"result": result})
        if service.stopping.is_set():
            self.server.request_shutdown()

    def log_message(self, format: str, *args) -> None:
        logger.debug("request: " + format, *args)


class ThreadingUnixHTTPServer(socketserver.ThreadingMixIn, socketserver.UnixStreamServer):
    daemon_threads = True

    def __init__(self, socket_path: str, service: LogViewerService) -> None:
        self.service = service
        self.socket_path = socket_path
        self._shutdown_started = threading.Event()
        remove_stale_socket(socket_path)
        super().__init__(socket_path, ServiceHandler)
        os.chmod(socket_path, SOCKET_MODE)

    def request_shutdown(self) -> None:
        if self._shutdown_started.is_set():
            return
        self._shutdown_started.set()
        # shutdown() blocks until serve_forever returns, so never call it on the serving thread
        threading.Thread(target=self.shutdown, daemon=True).start()

    def server_close(self) -> None:
        super().server_close()
        remove_stale_socket(self.socket_path)


def remove_stale_socket(path: str) -> None:
    try:
        mode = os.lstat(path).st_mode
    except FileNotFoundError:
        return
    if not stat.S_ISSOCK(mode):
        raise FileExistsError(f"{path} exists and is not a socket")
    os.unlink(path)
