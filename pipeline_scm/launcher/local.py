"""Launcher that runs commands as host processes."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Dict, Optional, Sequence

from .interface import LauncherError, LogSink

logger = logging.getLogger(__name__)


class LocalLauncher:
    """Run commands on the host with ``subprocess``.

    Output is collected and written to the sink once the process exits.
    The given environment is layered over the launcher's base environment,
    which defaults to ``os.environ``.
    """

    def __init__(self, base_environment: Optional[Dict[str, str]] = None) -> None:
        self._base_environment = dict(
            os.environ if base_environment is None else base_environment
        )

    def launch(
        self,
        command: Sequence[str],
        sink: LogSink,
        environment: Optional[Dict[str, str]] = None,
        cwd: Optional[Path] = None,
    ) -> int:
        env = dict(self._base_environment)
        if environment:
            env.update(environment)

        logger.debug("Launching %s (cwd=%s)", list(command), cwd)
        try:
            proc = subprocess.run(
                list(command),
                cwd=str(cwd) if cwd is not None else None,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                check=False,
            )
        except OSError as exc:
            raise LauncherError(f"failed to launch command: {list(command)}", cause=exc)

        if proc.stdout:
            sink.write_stdout(proc.stdout)
        if proc.stderr:
            sink.write_stderr(proc.stderr)

        logger.debug("Command %s exited with %d", command[0], proc.returncode)
        return proc.returncode
