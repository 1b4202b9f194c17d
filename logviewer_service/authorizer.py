from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from typing import Callable

from logviewer_service.errors import AuthorizationDenied


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallerIdentity:
    pid: int
    exe_path: str


def proc_exe_path(pid: int) -> str | None:
    """Canonical executable path of a live process, or None if it cannot be resolved."""
    link = f"/proc/{pid}/exe"
    try:
        os.readlink(link)
    except OSError:
        return None
    real = os.path.realpath(link)
    if not os.path.exists(real):
        return None
    return real


def find_trusted_invokers(
    names: tuple[str, ...],
    search_paths: tuple[str, ...],
    extra_paths: tuple[str, ...] = (),
) -> frozenset[str]:
    search = os.pathsep.join(search_paths)
    trusted = set()
    for name in names:
        found = shutil.which(name, path=search)
        if found:
            trusted.add(os.path.realpath(found))
        else:
            logger.warning("trusted invoker %s not found in %s", name, search)
    for path in extra_paths:
        trusted.add(os.path.realpath(path))
    return frozenset(trusted)


class CallerAuthorizer:
    def __init__(
        self,
        trusted_paths: frozenset[str] | set[str],
        resolve_exe: Callable[[int], str | None] = proc_exe_path,
    ) -> None:
        self.trusted_paths = frozenset(trusted_paths)
        self._resolve_exe = resolve_exe

    def authorize(self, pid: int | None) -> CallerIdentity:
        if pid is None or pid <= 0:
            logger.warning("denied caller with unresolvable pid")
            raise AuthorizationDenied(pid, None)
        exe_path = self._resolve_exe(pid)
        if not exe_path or exe_path not in self.trusted_paths:
            logger.warning("denied caller pid=%s exe=%s", pid, exe_path or "")
            raise AuthorizationDenied(pid, exe_path)
        return CallerIdentity(pid=pid, exe_path=exe_path)
