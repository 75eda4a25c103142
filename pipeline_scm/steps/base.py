"""Configuration, context and listener types shared by checkout steps."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Protocol

from .. import config as scm_config
from ..build.run import Run
from ..launcher.interface import Launcher, LogSink
from ..scm.base import RevisionSnapshot, SCMBackend

MAX_LABEL_LENGTH = 100
REQUIRED_CONTEXT = ("build", "workspace", "sink", "launcher")


@dataclass
class CheckoutConfig:
    """Options of a checkout step.

    - poll: record a revision baseline for later polling
    - changelog: ask the backend for a changelog since the previous build
    - label: annotation for the step's graph node
    """

    poll: bool = field(default_factory=scm_config.scm_poll_default)
    changelog: bool = field(default_factory=scm_config.scm_changelog_default)
    label: Optional[str] = None


@dataclass(frozen=True)
class LabelAction:
    """Human-readable label attached to a flow node."""

    label: str


class FlowNode(Protocol):
    """Graph node of the step being run."""

    def add_action(self, action: Any) -> None:  # pragma: no cover - protocol
        ...


@dataclass(frozen=True)
class StepContext:
    """Everything a checkout step needs from the pipeline engine."""

    build: Optional[Run]
    workspace: Optional[Path]
    sink: Optional[LogSink]
    launcher: Optional[Launcher]
    node: Optional[FlowNode] = None

    def missing(self) -> List[str]:
        """Names of required context entries that were not provided."""
        return [name for name in REQUIRED_CONTEXT if getattr(self, name) is None]


@dataclass(frozen=True)
class FormValidation:
    """Result of validating one configuration field."""

    kind: str  # "ok" | "error"
    message: Optional[str] = None

    @classmethod
    def ok(cls) -> "FormValidation":
        return cls("ok")

    @classmethod
    def error(cls, message: str) -> "FormValidation":
        return cls("error", message)

    @property
    def is_ok(self) -> bool:
        return self.kind == "ok"


class CheckoutListener(Protocol):
    """Receives a notification after each successful checkout.

    Listeners run in registration order. An exception raised by a listener
    is not contained: it stops the remaining listeners and fails the
    checkout like a backend failure would.
    """

    def on_checkout(
        self,
        build: Run,
        backend: SCMBackend,
        workspace: Path,
        sink: LogSink,
        changelog_path: Optional[Path],
        polling_baseline: Optional[RevisionSnapshot],
    ) -> None:  # pragma: no cover - protocol
        ...
