from __future__ import annotations

import fnmatch
import glob
import itertools
import logging
import os
import re
import shutil
import tempfile
import threading
from dataclasses import dataclass
from typing import Callable

from logviewer_service import runner
from logviewer_service.config import ServiceConfig
from logviewer_service.errors import PolicyRejected
from logviewer_service.policy import COREDUMP_LIST, COREDUMP_LIST_ARGV, PID_RE, validate_read_target


logger = logging.getLogger(__name__)

AUDIT = "audit"
STORAGE_RE = re.compile(r"Storage: (\S+)")
MISSING = "missing"
COREDUMP_MIN_COLUMNS = 10
COREDUMP_PID_COLUMN = 4
COREDUMP_STATE_COLUMN = 8


@dataclass(frozen=True)
class DiscoveredFile:
    path: str
    mtime_ns: int


class ScratchArea:
    """Process-lifetime directory holding decompressed copies of archived logs."""

    def __init__(self, root: str | None = None) -> None:
        self.path = tempfile.mkdtemp(prefix="logviewer-service-", dir=root)
        self._counter = itertools.count()
        self._lock = threading.Lock()

    def next_path(self) -> str:
        with self._lock:
            number = next(self._counter)
        return os.path.join(self.path, f"{number}.txt")

    def cleanup(self) -> None:
        shutil.rmtree(self.path, ignore_errors=True)


def list_log_files(directory: str, pattern: str | None, *, include_hidden: bool) -> list[DiscoveredFile]:
    """Regular, non-symlink files in directory matching pattern, newest first."""
    found = []
    with os.scandir(directory) as entries:
        for entry in entries:
            if not include_hidden and entry.name.startswith("."):
                continue
            if entry.is_symlink() or not entry.is_file(follow_symlinks=False):
                continue
            if pattern is not None and not fnmatch.fnmatchcase(entry.name, pattern):
                continue
            stat = entry.stat(follow_symlinks=False)
            found.append(DiscoveredFile(path=os.path.abspath(entry.path), mtime_ns=stat.st_mtime_ns))
    found.sort(key=lambda item: (-item.mtime_ns, item.path))
    return found


def is_gzip_name(path: str) -> bool:
    return os.path.splitext(path)[1][1:].lower() == "gz"


class FileDiscoveryEngine:
    def __init__(
        self,
        config: ServiceConfig,
        scratch: ScratchArea,
        run: Callable[..., runner.CapturedOutput] = runner.run,
    ) -> None:
        self.config = config
        self.scratch = scratch
        self._run = run

    def discover(self, logical_type: str, unzip: bool) -> list[str]:
        if self._is_vendor_path(logical_type):
            if os.path.isfile(logical_type):
                app_dir = os.path.dirname(os.path.abspath(logical_type))
            elif os.path.isdir(logical_type):
                app_dir = os.path.abspath(logical_type)
            else:
                return []
            self._check_directory(logical_type, app_dir)
            directory, name_filter = app_dir, os.path.basename(app_dir)
        elif logical_type == AUDIT:
            directory, name_filter = self.config.audit_dir, AUDIT
        elif logical_type == COREDUMP_LIST:
            return self.coredump_storage_paths()
        else:
            directory, name_filter = self.config.default_log_dir, logical_type

        if not os.path.isdir(directory):
            logger.warning("log directory %s does not exist", directory)
            return []
        files = list_log_files(directory, f"{name_filter}.*", include_hidden=False)
        return self._expand(files, unzip)

    def discover_under_path(self, path: str, unzip: bool) -> list[str]:
        if not path or not os.path.exists(path):
            logger.warning("path:[%s] does not exist", path)
            return []
        if os.path.isfile(path):
            directory = os.path.dirname(os.path.abspath(path))
            pattern = glob.escape(os.path.basename(path)) + "*"
        elif os.path.isdir(path):
            directory, pattern = os.path.abspath(path), None
        else:
            return []
        self._check_directory(path, directory)
        files = list_log_files(directory, pattern, include_hidden=True)
        return self._expand(files, unzip)

    def coredump_storage_paths(self) -> list[str]:
        listing = self._run(COREDUMP_LIST_ARGV)
        raw = listing.stdout.replace(b"\x00", b"").replace(b"\x01", b"")
        lines = [line for line in raw.decode("utf-8", errors="replace").split("\n") if line.strip()]

        paths = []
        for line in reversed(lines):
            columns = line.split()
            if len(columns) < COREDUMP_MIN_COLUMNS:
                continue
            pid = columns[COREDUMP_PID_COLUMN]
            if columns[COREDUMP_STATE_COLUMN] == MISSING or not PID_RE.fullmatch(pid):
                continue
            info = self._run(("coredumpctl", "info", pid))
            match = STORAGE_RE.search(info.stdout.decode("utf-8", errors="replace"))
            if match:
                paths.append(match.group(1))
        return paths

    def _is_vendor_path(self, logical_type: str) -> bool:
        lowered = logical_type.lower()
        return any(marker.lower() in lowered for marker in self.config.brand_markers)

    def _check_directory(self, requested: str, directory: str) -> None:
        if ".." in requested:
            raise PolicyRejected(requested, "path traversal")
        # symlinked directories are judged by where they point
        real = os.path.realpath(directory).rstrip(os.sep) + os.sep
        validate_read_target(real, self.config.policy)

    def _expand(self, files: list[DiscoveredFile], unzip: bool) -> list[str]:
        paths = []
        for item in files:
            if not (unzip and is_gzip_name(item.path)):
                paths.append(item.path)
                continue
            target = self.scratch.next_path()
            result = self._run(("gunzip", "-c", item.path), stdout_path=target)
            if not result.ok:
                logger.warning("gunzip failed (%s) for %s", result.exit_code, item.path)
                try:
                    os.remove(target)
                except OSError:
                    pass
                continue
            paths.append(target)
        return paths
