"""Checkout listeners shipped with pipeline-scm."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Hashable, List, Optional

from ..build.run import Run
from ..launcher.interface import LogSink
from ..scm.base import RevisionSnapshot, SCMBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutRecord:
    """One checkout performed during a build."""

    source_identity: Hashable
    workspace: Path
    changelog: Optional[Path]
    polling_baseline: Optional[RevisionSnapshot]


class CheckoutHistory:
    """Build action listing the checkouts of a build, in completion order."""

    def __init__(self) -> None:
        self.records: List[CheckoutRecord] = []

    def changelogs(self) -> List[Path]:
        """Changelog files retained by this build's checkouts."""
        return [r.changelog for r in self.records if r.changelog is not None]


class CheckoutHistoryListener:
    """Appends a CheckoutRecord to the build's CheckoutHistory action."""

    def on_checkout(
        self,
        build: Run,
        backend: SCMBackend,
        workspace: Path,
        sink: LogSink,
        changelog_path: Optional[Path],
        polling_baseline: Optional[RevisionSnapshot],
    ) -> None:
        record = CheckoutRecord(
            source_identity=backend.source_identity(),
            workspace=workspace,
            changelog=changelog_path,
            polling_baseline=polling_baseline,
        )
        with build.lock:
            history = build.get_action(CheckoutHistory)
            if history is None:
                history = CheckoutHistory()
                build.add_action(history)
            history.records.append(record)
        logger.debug("Build #%s: recorded checkout of %s", build.number, record.source_identity)


class LoggingCheckoutListener:
    """Writes a one-line checkout summary to the build output."""

    def on_checkout(
        self,
        build: Run,
        backend: SCMBackend,
        workspace: Path,
        sink: LogSink,
        changelog_path: Optional[Path],
        polling_baseline: Optional[RevisionSnapshot],
    ) -> None:
        changes = changelog_path.name if changelog_path is not None else "none"
        line = (
            f"Checked out {backend.source_identity()} into {workspace}"
            f" (revision: {polling_baseline}, changelog: {changes})\n"
        )
        sink.write_stdout(line.encode("utf-8"))
