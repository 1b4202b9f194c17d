from __future__ import annotations

import json
import os
import shutil
import socket
import stat
import sys
import tempfile
import threading
from pathlib import Path

import pytest

from logviewer_service.authorizer import CallerAuthorizer
from logviewer_service.client import UnixHTTPConnection, call
from logviewer_service.server import MAX_BODY_BYTES, ThreadingUnixHTTPServer, peer_pid
from logviewer_service.service import LogViewerService
from tests.support.io import wait_until, write_gz, write_log


pytestmark = pytest.mark.integration

# the test process itself is the caller, so trust the interpreter running pytest
SELF_EXE = os.path.realpath(sys.executable)


@pytest.fixture
def socket_dir():
    # AF_UNIX paths are capped near 108 bytes, too short for pytest's tmp_path
    path = Path(tempfile.mkdtemp(prefix="lvs-"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


def _start(service_config, socket_path: Path, trusted: set[str]):
    service = LogViewerService(service_config, CallerAuthorizer(trusted))
    server = ThreadingUnixHTTPServer(str(socket_path), service)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return service, server, thread


@pytest.fixture
def served(service_config, socket_dir):
    socket_path = socket_dir / "svc.sock"
    service, server, thread = _start(service_config, socket_path, {SELF_EXE})
    yield socket_path, service, thread
    server.request_shutdown()
    thread.join(timeout=5)
    server.server_close()
    service.close()


@pytest.fixture
def served_untrusted(service_config, socket_dir):
    socket_path = socket_dir / "svc.sock"
    service, server, thread = _start(service_config, socket_path, {"/usr/bin/deepin-log-viewer"})
    yield socket_path
    server.request_shutdown()
    thread.join(timeout=5)
    server.server_close()
    service.close()


def test_socket_is_world_connectable(served) -> None:
    socket_path, _, _ = served
    mode = os.stat(socket_path).st_mode
    assert stat.S_ISSOCK(mode)
    assert stat.S_IMODE(mode) == 0o666


def test_read_log_over_the_socket(served, log_tree) -> None:
    socket_path, _, _ = served
    path = write_log(log_tree.var_log / "syslog", b"boot\x00ok\n")
    status, body = call(str(socket_path), "readLog", {"filePath": str(path)})
    assert status == 200
    assert body == {"result": "boot ok\n"}

    status, body = call(str(socket_path), "readLog", {"filePath": "/etc/shadow"})
    assert (status, body) == (200, {"result": " "})


def test_untrusted_caller_gets_an_explicit_denial(served_untrusted, log_tree) -> None:
    path = write_log(log_tree.var_log / "syslog", "secret\n")
    status, body = call(str(served_untrusted), "readLog", {"filePath": str(path)})
    assert status == 403
    assert body["error"] == "unauthorized"
    assert body["pid"] == os.getpid()
    assert body["path"] == SELF_EXE
    assert str(os.getpid()) in body["message"]


def test_untrusted_caller_may_still_query_metadata(served_untrusted, log_tree) -> None:
    path = write_log(log_tree.var_log / "syslog", "1234")
    assert call(str(served_untrusted), "isFileExist", {"filePath": str(path)}) == (200, {"result": True})
    assert call(str(served_untrusted), "getFileSize", {"filePath": str(path)}) == (200, {"result": 4})
    assert call(str(served_untrusted), "exitCode") == (200, {"result": 0})
    status, _ = call(str(served_untrusted), "quit")
    assert status == 403


def test_streaming_over_the_socket(served, log_tree) -> None:
    socket_path, service, _ = served
    service.streams.chunk_ceiling = 32
    content = "".join(f"record {index}\n" for index in range(40))
    path = write_log(log_tree.var_log / "daemon.log", content)

    _, body = call(str(socket_path), "openLogStream", {"filePath": str(path)})
    token = body["result"]
    assert len(token) == 32

    received = []
    while True:
        status, body = call(str(socket_path), "readLogInStream", {"token": token})
        assert status == 200
        if not body["result"]:
            break
        received.append(body["result"])
    assert len(received) > 1
    assert "".join(received) == content
    assert call(str(socket_path), "readLogInStream", {"token": token}) == (200, {"result": ""})


def test_file_info_and_export_over_the_socket(served, log_tree) -> None:
    socket_path, _, _ = served
    write_log(log_tree.var_log / "app.log", "plain\n")
    write_gz(log_tree.var_log / "old.log.gz", "archived\n")

    assert call(str(socket_path), "getFileInfo", {"file": "app", "unzip": True}) == (
        200,
        {"result": [str(log_tree.var_log / "app.log")]},
    )
    _, body = call(str(socket_path), "getFileInfo", {"file": "old", "unzip": True})
    (scratch_path,) = body["result"]
    assert Path(scratch_path).read_text(encoding="utf-8") == "archived\n"

    _, body = call(str(socket_path), "getOtherFileInfo", {"file": str(log_tree.var_log / "app.log"), "unzip": False})
    assert body["result"] == [str(log_tree.var_log / "app.log")]

    status, body = call(
        str(socket_path),
        "exportLog",
        {"outDir": str(log_tree.home), "in": str(log_tree.var_log / "app.log"), "isFile": True},
    )
    assert (status, body) == (200, {"result": True})
    assert stat.S_IMODE(os.stat(log_tree.home / "app.log").st_mode) == 0o777

    status, body = call(str(socket_path), "exportLog", {"outDir": str(log_tree.home / "x"), "in": "dmesg", "isFile": False})
    assert (status, body) == (200, {"result": False})


def test_malformed_requests(served) -> None:
    socket_path, _, _ = served
    assert call(str(socket_path), "dropTables")[0] == 404
    status, body = call(str(socket_path), "getFileInfo", {"file": "syslog"})
    assert status == 400
    assert "unzip" in body["error"]

    conn = UnixHTTPConnection(str(socket_path), timeout=5)
    try:
        conn.request("POST", "/readLog", body=b"{not json", headers={"Content-Type": "application/json"})
        resp = conn.getresponse()
        assert resp.status == 400
        assert json.loads(resp.read()) == {"error": "invalid json"}
    finally:
        conn.close()


def test_oversized_body_is_refused_without_being_read(served) -> None:
    socket_path, _, _ = served
    conn = UnixHTTPConnection(str(socket_path), timeout=5)
    try:
        conn.putrequest("POST", "/readLog")
        conn.putheader("Content-Type", "application/json")
        conn.putheader("Content-Length", str(MAX_BODY_BYTES + 1))
        conn.endheaders()
        resp = conn.getresponse()
        assert resp.status == 400
        assert json.loads(resp.read()) == {"error": "request body too large"}
    finally:
        conn.close()


def test_quit_stops_the_server(served) -> None:
    socket_path, service, thread = served
    assert call(str(socket_path), "quit") == (200, {"result": None})
    assert service.stopping.is_set()
    wait_until(lambda: True if not thread.is_alive() else None, timeout_sec=5, description="server thread exit")


def test_peer_pid_reports_connecting_process() -> None:
    left, right = socket.socketpair(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        assert peer_pid(left) == os.getpid()
    finally:
        left.close()
        right.close()
