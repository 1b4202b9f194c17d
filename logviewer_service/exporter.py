from __future__ import annotations

import logging
import os
import shlex
from typing import Callable

from logviewer_service import runner
from logviewer_service.config import ServiceConfig
from logviewer_service.errors import ExportFailure
from logviewer_service.policy import validate_export_target


logger = logging.getLogger(__name__)

APP_JOURNAL = "journalctl_app"
EXPORT_MODE = "777"


def normalize_output_dir(output_dir: str) -> str:
    return output_dir if output_dir.endswith("/") else output_dir + "/"


def app_name_from_output_dir(output_dir: str) -> str:
    """Second-to-last segment of a slash-terminated directory, i.e. its own name."""
    parts = normalize_output_dir(output_dir).split("/")
    return parts[-2] if len(parts) >= 2 else ""


class ExportEngine:
    def __init__(
        self,
        config: ServiceConfig,
        run_shell: Callable[[str], runner.CapturedOutput] = runner.run_shell,
    ) -> None:
        self.config = config
        self._run_shell = run_shell

    def export(self, output_dir: str, source: str, is_file: bool) -> str:
        """Write the artifact into output_dir and return its path."""
        out_dir = normalize_output_dir(output_dir)
        if not os.path.isdir(out_dir):
            raise ExportFailure(f"output directory does not exist: {output_dir}")
        if not source:
            raise ExportFailure("nothing to export")

        if is_file:
            artifact, script = self._copy_script(out_dir, source)
        else:
            artifact, script = self._command_script(out_dir, source)
        if os.path.islink(artifact):
            # cp, the redirect and chmod would all follow it
            raise ExportFailure(f"refusing to overwrite symlink {artifact}")

        quoted = shlex.quote(artifact)
        script += f"; rc=$?; chmod {EXPORT_MODE} -- {quoted} && exit $rc"
        result = self._run_shell(script)
        if not result.ok:
            logger.warning("export command failed (%s): %s", result.exit_code, script)
            raise ExportFailure(f"export of {source} failed with exit code {result.exit_code}")
        logger.info("exported %s to %s", source, artifact)
        return artifact

    def _copy_script(self, out_dir: str, source: str) -> tuple[str, str]:
        validate_export_target(source, self.config.policy)
        real = os.path.realpath(source)
        if real != source:
            # the link target has to satisfy the same whitelist
            validate_export_target(real, self.config.policy)
        if not os.path.isfile(source):
            logger.warning("export source is not a file: %s", source)
            raise ExportFailure(f"not a regular file: {source}")
        artifact = out_dir + os.path.basename(source)
        # copy the resolved path under the name the caller asked for
        return artifact, f"cp -- {shlex.quote(real)} {shlex.quote(artifact)}"

    def _command_script(self, out_dir: str, key: str) -> tuple[str, str]:
        template = self.config.commands.get(key)
        if template is None:
            logger.warning("unknown command: %s", key)
            raise ExportFailure(f"unknown command: {key}")
        argv = shlex.split(template)
        artifact = out_dir + key + ".log"
        if key == APP_JOURNAL:
            app_name = app_name_from_output_dir(out_dir)
            if not app_name:
                raise ExportFailure(f"cannot derive application name from {out_dir}")
            artifact = out_dir + app_name + ".log"
            argv.append(f"SYSLOG_IDENTIFIER={app_name}")
            logger.debug("journalctl app export cmd: %s", shlex.join(argv))
        return artifact, f"{shlex.join(argv)} > {shlex.quote(artifact)} 2>&1"

