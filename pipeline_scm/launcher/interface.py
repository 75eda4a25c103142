"""Seams between SCM backends and the processes they run.

A backend never spawns processes itself. It asks a ``Launcher`` to run
each command and points the launcher at a ``LogSink`` that receives the
command's output.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence


@dataclass(frozen=True)
class VolumeMount:
    """Bind mount making a host workspace visible to a containerized launcher.

    Workspaces are normally mounted with ``target == source`` so that paths
    handed to backends mean the same thing on both sides. ``selinux_label``
    is passed to podman as the relabel option ("z" shared, "Z" private).
    """

    source: Path
    target: Path
    read_only: bool = False
    selinux_label: Optional[str] = None


class LogSink(Protocol):
    """Append-only destination for build output."""

    def write_stdout(self, data: bytes) -> None:  # pragma: no cover - protocol
        ...

    def write_stderr(self, data: bytes) -> None:  # pragma: no cover - protocol
        ...


class Launcher(Protocol):
    """Execution environment that SCM backends run their commands in.

    The checkout orchestrator never calls a launcher itself; it only hands
    it through to the backend.
    """

    def launch(
        self,
        command: Sequence[str],
        sink: LogSink,
        environment: Optional[Dict[str, str]] = None,
        cwd: Optional[Path] = None,
    ) -> int:  # pragma: no cover - protocol
        """Run command to completion and return its exit code.

        Args:
            command: argv of the process, e.g. ["git", "fetch", "origin"]
            sink: receives everything the process writes
            environment: extra variables layered over the launcher's own
            cwd: working directory, as a host path

        Returns:
            The process exit status

        Raises:
            LauncherError: If the command could not be started
        """
        ...


class LauncherError(RuntimeError):
    """Raised when a launcher cannot run a command, or a command fails."""

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.__cause__ = cause


class InMemoryLogSink:
    """Sink that keeps output in memory, for commands whose output is parsed."""

    def __init__(self) -> None:
        self._out_chunks: List[bytes] = []
        self._err_chunks: List[bytes] = []

    def write_stdout(self, data: bytes) -> None:
        self._out_chunks.append(bytes(data))

    def write_stderr(self, data: bytes) -> None:
        self._err_chunks.append(bytes(data))

    @property
    def stdout(self) -> bytes:
        return b"".join(self._out_chunks)

    @property
    def stderr(self) -> bytes:
        return b"".join(self._err_chunks)

    def text(self) -> str:
        """Decoded stdout, stripped of surrounding whitespace."""
        return self.stdout.decode("utf-8", errors="replace").strip()
