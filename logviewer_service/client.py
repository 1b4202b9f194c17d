from __future__ import annotations

import http.client
import json
import socket
from typing import Any


class UnixHTTPConnection(http.client.HTTPConnection):
    def __init__(self, socket_path: str, timeout: float | None = None) -> None:
        super().__init__("localhost", timeout=timeout)
        self.socket_path = socket_path

    def connect(self) -> None:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        if self.timeout is not None:
            sock.settimeout(self.timeout)
        sock.connect(self.socket_path)
        self.sock = sock


def call(
    socket_path: str,
    operation: str,
    payload: dict[str, Any] | None = None,
    *,
    timeout: float | None = None,
) -> tuple[int, dict[str, Any]]:
    """POST one operation and return (status, decoded JSON body)."""
    body = json.dumps(payload or {}).encode("utf-8")
    conn = UnixHTTPConnection(socket_path, timeout=timeout)
    try:
        conn.request("POST", f"/{operation}", body=body, headers={"Content-Type": "application/json"})
        resp = conn.getresponse()
        raw = resp.read().decode("utf-8")
    finally:
        conn.close()
    try:
        parsed = json.loads(raw) if raw else {}
    except json.JSONDecodeError:
        parsed = {"error": raw}
    return resp.status, parsed
