"""
The operations the log viewer front end calls.

Each gated operation authorizes the caller before anything else happens and
converts internal errors into the sentinel values the front end expects.
AuthorizationDenied and SessionBusy are the only errors that escape; the
transport turns them into explicit error replies.
"""
from __future__ import annotations

import functools
import logging
import os
import threading
from dataclasses import dataclass
from typing import Callable

from logviewer_service import runner
from logviewer_service.authorizer import CallerAuthorizer
from logviewer_service.config import ServiceConfig
from logviewer_service.discovery import FileDiscoveryEngine, ScratchArea
from logviewer_service.errors import LogViewerError, SessionInvalid, SubprocessFailure
from logviewer_service.exporter import ExportEngine
from logviewer_service.policy import validate_read_target
from logviewer_service.streams import StreamRegistry


logger = logging.getLogger(__name__)

READ_FAILED = " "


def sanitize_log_bytes(raw: bytes) -> tuple[str, int]:
    """Replace NUL bytes with spaces and decode; returns (text, replaced_count)."""
    replaced = raw.count(b"\x00")
    if replaced:
        raw = raw.replace(b"\x00", b" ")
    return raw.decode("utf-8", errors="replace"), replaced


@dataclass(frozen=True)
class Operation:
    method: str
    params: tuple[tuple[str, type], ...]
    gated: bool

    def parse_args(self, payload: dict) -> list:
        args = []
        for name, kind in self.params:
            value = payload.get(name)
            if not isinstance(value, kind):
                raise ValueError(f"{name} must be a {kind.__name__}")
            args.append(value)
        return args


OPERATIONS = {
    "readLog": Operation("read_log", (("filePath", str),), True),
    "openLogStream": Operation("open_log_stream", (("filePath", str),), True),
    "readLogInStream": Operation("read_log_in_stream", (("token", str),), True),
    "isFileExist": Operation("is_file_exist", (("filePath", str),), False),
    "getFileSize": Operation("get_file_size", (("filePath", str),), False),
    "getFileInfo": Operation("get_file_info", (("file", str), ("unzip", bool)), True),
    "getOtherFileInfo": Operation("get_other_file_info", (("file", str), ("unzip", bool)), True),
    "exportLog": Operation("export_log", (("outDir", str), ("in", str), ("isFile", bool)), True),
    "exitCode": Operation("exit_code", (), False),
    "quit": Operation("quit", (), True),
}


class LogViewerService:
    def __init__(
        self,
        config: ServiceConfig,
        authorizer: CallerAuthorizer,
        *,
        run: Callable[..., runner.CapturedOutput] = runner.run,
        run_shell: Callable[[str], runner.CapturedOutput] = runner.run_shell,
        scratch: ScratchArea | None = None,
    ) -> None:
        self.config = config
        self.authorizer = authorizer
        self.stopping = threading.Event()
        self._exit_lock = threading.Lock()
        self._last_exit_code = 0
        self._run = self._recording(run)
        self.scratch = scratch or ScratchArea(config.scratch_root)
        self.streams = StreamRegistry(config.chunk_ceiling)
        self.discovery = FileDiscoveryEngine(config, self.scratch, run=self._run)
        self.exporter = ExportEngine(config, run_shell=self._recording(run_shell))

    def _recording(self, fn: Callable[..., runner.CapturedOutput]) -> Callable[..., runner.CapturedOutput]:
        @functools.wraps(fn)
        def wrapper(*args, **kwargs) -> runner.CapturedOutput:
            result = fn(*args, **kwargs)
            with self._exit_lock:
                self._last_exit_code = result.exit_code
            return result

        return wrapper

    def _read(self, target_text: str) -> str:
        target = validate_read_target(target_text, self.config.policy)
        if not target.is_file:
            return self._run(target.argv).stdout.decode("utf-8", errors="replace")

        real = os.path.realpath(target.value)
        if real != target.value:
            validate_read_target(real, self.config.policy)
        # cat the resolved path so the checked target is the one that gets read
        argv = ["cat", "--", real]
        result = self._run(argv)
        if not result.ok:
            raise SubprocessFailure(argv, result.exit_code)
        text, replaced = sanitize_log_bytes(result.stdout)
        logger.info("read %s: replaced %d NUL bytes with spaces", target.value, replaced)
        return text

    def read_log(self, caller_pid: int | None, file_path: str) -> str:
        self.authorizer.authorize(caller_pid)
        try:
            return self._read(file_path)
        except LogViewerError as exc:
            logger.warning("readLog refused: %s", exc)
            return READ_FAILED

    def open_log_stream(self, caller_pid: int | None, file_path: str) -> str:
        self.authorizer.authorize(caller_pid)
        try:
            content = self._read(file_path)
        except LogViewerError as exc:
            logger.warning("openLogStream refused: %s", exc)
            return ""
        return self.streams.open(file_path, content)

    def read_log_in_stream(self, caller_pid: int | None, token: str) -> str:
        self.authorizer.authorize(caller_pid)
        try:
            return self.streams.read_chunk(token)
        except SessionInvalid as exc:
            logger.debug("readLogInStream: %s", exc)
            return ""

    def is_file_exist(self, file_path: str) -> bool:
        return os.path.exists(file_path)

    def get_file_size(self, file_path: str) -> int:
        try:
            return os.path.getsize(file_path)
        except OSError:
            return 0

    def get_file_info(self, caller_pid: int | None, file: str, unzip: bool) -> list[str]:
        self.authorizer.authorize(caller_pid)
        try:
            return self.discovery.discover(file, unzip)
        except (LogViewerError, OSError) as exc:
            logger.warning("getFileInfo(%s) failed: %s", file, exc)
            return []

    def get_other_file_info(self, caller_pid: int | None, file: str, unzip: bool) -> list[str]:
        self.authorizer.authorize(caller_pid)
        try:
            return self.discovery.discover_under_path(file, unzip)
        except (LogViewerError, OSError) as exc:
            logger.warning("getOtherFileInfo(%s) failed: %s", file, exc)
            return []

    def export_log(self, caller_pid: int | None, out_dir: str, source: str, is_file: bool) -> bool:
        self.authorizer.authorize(caller_pid)
        try:
            self.exporter.export(out_dir, source, is_file)
        except (LogViewerError, OSError) as exc:
            logger.warning("exportLog failed: %s", exc)
            return False
        return True

    def exit_code(self) -> int:
        with self._exit_lock:
            return self._last_exit_code

    def quit(self, caller_pid: int | None) -> None:
        identity = self.authorizer.authorize(caller_pid)
        logger.info("quit requested by pid %s (%s)", identity.pid, identity.exe_path)
        self.stopping.set()

    def close(self) -> None:
        self.streams.close_all()
        self.scratch.cleanup()
