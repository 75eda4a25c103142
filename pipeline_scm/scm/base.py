"""Base SCM backend protocol."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Hashable, Optional, Protocol

from ..build.run import Run
from ..launcher.interface import Launcher, LogSink

# Backend-defined marker of source state; compared only by the backend.
RevisionSnapshot = Any


class SCMBackend(Protocol):
    """Protocol for version-control backends driven by a checkout step.

    A checkout step creates a fresh backend whenever it needs one and never
    caches it, so anything a backend wants to remember between calls must be
    recorded on the build record.
    """

    def source_identity(self) -> Hashable:
        """Key identifying this source across builds.

        Derived from backend configuration (e.g. repository URL), never
        from object identity, so that backends created for different builds
        of the same job map to the same revision state entry.
        """
        ...

    def checkout(
        self,
        build: Run,
        launcher: Launcher,
        workspace: Path,
        sink: LogSink,
        changelog_path: Optional[Path],
        baseline: Optional[RevisionSnapshot],
    ) -> None:
        """Check out or update sources into workspace.

        Args:
            build: Build being run
            launcher: Execution environment for SCM commands
            workspace: Checkout directory
            sink: Build output
            changelog_path: File to write changes since baseline into, or
                None when no changelog was requested. Backends that have
                nothing to report must leave the file untouched.
            baseline: Snapshot recorded by the previous build, or None

        Raises:
            Exception: Any failure; propagated to the pipeline unchanged.
        """
        ...

    def calc_revisions_from_build(
        self,
        build: Run,
        workspace: Path,
        launcher: Launcher,
        sink: LogSink,
    ) -> Optional[RevisionSnapshot]:
        """Compute the snapshot of workspace after checkout, or None."""
        ...

    def post_checkout(
        self,
        build: Run,
        launcher: Launcher,
        workspace: Path,
        sink: LogSink,
    ) -> None:
        """Hook run after a successful checkout and listener notification."""
        ...

    def build_environment(self, build: Run, env: Dict[str, str]) -> None:
        """Add SCM-derived environment variables to env.

        Example:
            env = {}
            backend.build_environment(build, env)
            # env == {"GIT_URL": "...", "GIT_COMMIT": "..."}
        """
        ...
