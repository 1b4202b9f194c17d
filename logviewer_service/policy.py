"""
Read and export whitelists.

Everything here is pure: callers pass the frozen PolicyConfig and get back
either a classified target or a PolicyRejected error. Diagnostic commands are
returned as argv tuples so they are never handed to a shell.
"""
from __future__ import annotations

import os
import re
import shlex
from dataclasses import dataclass

from logviewer_service.config import PolicyConfig
from logviewer_service.errors import PolicyRejected


TRAVERSAL = ".."
COREDUMP_LIST = "coredump"
COREDUMP_LIST_ARGV = ("coredumpctl", "list", "--no-pager")
PID_RE = re.compile(r"^[0-9]+$")

COMMAND_PREFIXES = ("coredumpctl info", "coredumpctl dump", "readelf")


@dataclass(frozen=True)
class ReadTarget:
    kind: str
    value: str
    argv: tuple[str, ...] = ()

    @property
    def is_file(self) -> bool:
        return self.kind == "file"


def contains_traversal(value: str) -> bool:
    return TRAVERSAL in value


def has_allowed_prefix(value: str, prefixes: tuple[str, ...]) -> bool:
    return any(value.startswith(prefix) for prefix in prefixes)


def _tokens(target: str) -> list[str]:
    try:
        return shlex.split(target, posix=True)
    except ValueError as exc:
        raise PolicyRejected(target, "malformed command") from exc


def _require_pid(target: str, value: str) -> str:
    if not PID_RE.fullmatch(value):
        raise PolicyRejected(target, "process id must be numeric")
    return value


def parse_diagnostic_command(target: str, policy: PolicyConfig) -> tuple[str, ...] | None:
    """Return the argv for a diagnostic command form, or None if target is not one."""
    if target == COREDUMP_LIST:
        return COREDUMP_LIST_ARGV
    if not target.startswith(COMMAND_PREFIXES):
        return None

    tokens = _tokens(target)
    if tokens[:2] == ["coredumpctl", "info"]:
        if len(tokens) != 3:
            raise PolicyRejected(target, "expected: coredumpctl info <pid>")
        return ("coredumpctl", "info", _require_pid(target, tokens[2]))

    if tokens[:2] == ["coredumpctl", "dump"]:
        if len(tokens) != 5 or tokens[3] != "-o":
            raise PolicyRejected(target, "expected: coredumpctl dump <pid> -o <path>")
        pid = _require_pid(target, tokens[2])
        output = tokens[4]
        if not os.path.isabs(output) or not has_allowed_prefix(output, policy.read_prefixes):
            raise PolicyRejected(target, "dump output outside allowed directories")
        return ("coredumpctl", "dump", pid, "-o", output)

    if tokens and tokens[0] == "readelf":
        options = [token for token in tokens[1:] if token.startswith("-")]
        operands = [token for token in tokens[1:] if not token.startswith("-")]
        if not options or any(option not in policy.readelf_options for option in options):
            raise PolicyRejected(target, "readelf option not allowed")
        if len(operands) != 1 or not os.path.isabs(operands[0]):
            raise PolicyRejected(target, "readelf needs exactly one absolute path")
        if not has_allowed_prefix(operands[0], policy.read_prefixes + policy.readelf_prefixes):
            raise PolicyRejected(target, "readelf path outside allowed directories")
        return ("readelf", *options, operands[0])

    raise PolicyRejected(target, "unknown diagnostic command")


def validate_read_target(target: str, policy: PolicyConfig) -> ReadTarget:
    if not target:
        raise PolicyRejected(target, "empty target")
    if contains_traversal(target):
        raise PolicyRejected(target, "path traversal")
    argv = parse_diagnostic_command(target, policy)
    if argv is not None:
        return ReadTarget(kind="command", value=target, argv=argv)
    if not has_allowed_prefix(target, policy.read_prefixes):
        raise PolicyRejected(target, "outside allowed read directories")
    return ReadTarget(kind="file", value=target)


def validate_export_target(path: str, policy: PolicyConfig) -> str:
    if not path:
        raise PolicyRejected(path, "empty target")
    if contains_traversal(path):
        raise PolicyRejected(path, "path traversal")
    if not has_allowed_prefix(path, policy.export_prefixes):
        raise PolicyRejected(path, "outside allowed export directories")
    return path
