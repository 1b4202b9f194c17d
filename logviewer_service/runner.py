from __future__ import annotations

import errno
import logging
import shlex
import subprocess
from dataclasses import dataclass


logger = logging.getLogger(__name__)

SHELL = "/bin/bash"
EXIT_NOT_FOUND = 127
EXIT_NOT_EXECUTABLE = 126


@dataclass(frozen=True)
class CapturedOutput:
    stdout: bytes
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def run(argv: list[str] | tuple[str, ...], *, stdout_path: str | None = None) -> CapturedOutput:
    """
    Run argv to completion and capture stdout.

    Blocks until the child exits; there is no timeout. Spawn failures come back
    as empty output with a shell-style exit code instead of raising.
    """
    cmd = [str(part) for part in argv]
    try:
        if stdout_path is not None:
            with open(stdout_path, "wb") as out:
                result = subprocess.run(cmd, stdout=out, stderr=subprocess.PIPE, check=False)
            stdout = b""
        else:
            result = subprocess.run(cmd, capture_output=True, check=False)
            stdout = result.stdout
    except OSError as exc:
        exit_code = EXIT_NOT_FOUND if exc.errno == errno.ENOENT else EXIT_NOT_EXECUTABLE
        logger.warning("failed to start %s: %s", shlex.join(cmd), exc)
        return CapturedOutput(stdout=b"", exit_code=exit_code)

    if result.returncode != 0:
        logger.debug(
            "command exited %s: %s stderr=%s",
            result.returncode,
            shlex.join(cmd),
            (result.stderr or b"").decode("utf-8", errors="replace").strip(),
        )
    return CapturedOutput(stdout=stdout, exit_code=result.returncode)


def run_shell(script: str) -> CapturedOutput:
    return run([SHELL, "-c", script])
