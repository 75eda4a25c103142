"""Launchers are the execution environments SCM backends run commands in.

Boundary rules:
- The checkout orchestrator treats a launcher as an opaque handle.
- Only ``podman.py`` talks to the Podman Python API.
"""

from .interface import InMemoryLogSink, Launcher, LauncherError, LogSink, VolumeMount
from .local import LocalLauncher

__all__ = [
    "InMemoryLogSink",
    "Launcher",
    "LauncherError",
    "LocalLauncher",
    "LogSink",
    "VolumeMount",
]
