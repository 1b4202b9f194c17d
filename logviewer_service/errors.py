from __future__ import annotations


class LogViewerError(Exception):
    """Base class for errors raised inside the service."""


class ConfigError(LogViewerError):
    pass


class AuthorizationDenied(LogViewerError):
    """The IPC caller is not a trusted invoker."""

    def __init__(self, pid: int | None, path: str | None) -> None:
        super().__init__(f"(pid: {pid})[{path or ''}] is not allowed to call the log viewer service")
        self.pid = pid
        self.path = path


class PolicyRejected(LogViewerError):
    def __init__(self, target: str, reason: str) -> None:
        super().__init__(f"{reason}: {target}")
        self.target = target
        self.reason = reason


class SubprocessFailure(LogViewerError):
    def __init__(self, argv: list[str], exit_code: int) -> None:
        super().__init__(f"command failed ({exit_code}): {' '.join(argv)}")
        self.argv = argv
        self.exit_code = exit_code


class SessionInvalid(LogViewerError):
    pass


class SessionBusy(LogViewerError):
    pass


class ExportFailure(LogViewerError):
    pass
