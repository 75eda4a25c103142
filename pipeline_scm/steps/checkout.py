"""Checkout step: runs one SCM checkout inside a build and records its revision state.

The orchestrator prepares a changelog file, resolves the baseline recorded
by the previous build, delegates the checkout to an SCM backend, stores the
resulting revision snapshot on the current build, and notifies listeners.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Hashable, Optional, Sequence

from .. import config as scm_config
from ..build.revision_state import MultiRevisionState
from ..build.run import Run
from ..launcher.interface import Launcher, LogSink
from ..scm.base import RevisionSnapshot, SCMBackend
from .base import (
    MAX_LABEL_LENGTH,
    REQUIRED_CONTEXT,
    CheckoutConfig,
    CheckoutListener,
    FormValidation,
    LabelAction,
    StepContext,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutResult:
    """Outcome of a successful checkout."""

    changelog: Optional[Path]
    baseline: Optional[RevisionSnapshot]
    polling_baseline: Optional[RevisionSnapshot]


class CheckoutOrchestrator:
    """Drives a single checkout against an SCM backend.

    Listeners are fixed at construction and notified in that order after
    each successful checkout.

    Locking: the revision state attached to a build is shared by every
    checkout step of that build. It is only touched while holding that
    build's ``lock``, and the lock is never held across a backend call.
    """

    def __init__(self, listeners: Sequence[CheckoutListener] = ()) -> None:
        self.listeners = tuple(listeners)

    def checkout(
        self,
        build: Run,
        workspace: Path,
        sink: LogSink,
        launcher: Launcher,
        config: CheckoutConfig,
        backend: SCMBackend,
    ) -> CheckoutResult:
        """Check out backend's sources into workspace for build.

        Workflow:
        1. Create the changelog file (when changelog is enabled)
        2. Look up the baseline recorded by the previous build
        3. Run the backend checkout
        4. Discard the changelog file if the backend never touched it
        5. Compute the new revision snapshot (when poll or changelog is enabled)
        6. Record the snapshot on this build
        7. Notify listeners
        8. Run the backend post-checkout hook

        Any failure removes the changelog file and is re-raised unchanged.

        Returns:
            CheckoutResult with the retained changelog path and both snapshots

        Raises:
            Exception: Whatever the backend, a listener, or changelog
                creation raised
        """
        changelog_path: Optional[Path] = None
        try:
            if config.changelog:
                changelog_path = self._create_changelog_file(build)
            original_mtime = (
                changelog_path.stat().st_mtime_ns if changelog_path is not None else None
            )

            source_identity = backend.source_identity()
            baseline = self._resolve_baseline(build, source_identity)
            logger.info(
                "Checking out %s into %s (build #%s, baseline=%s)",
                source_identity,
                workspace,
                build.number,
                baseline,
            )

            backend.checkout(build, launcher, workspace, sink, changelog_path, baseline)

            if changelog_path is not None and self._is_untouched(changelog_path, original_mtime):
                # Parsing an empty changelog fails downstream
                logger.debug("Backend left changelog %s untouched, discarding", changelog_path)
                self._delete(changelog_path)
                changelog_path = None

            polling_baseline = None
            if config.poll or config.changelog:
                polling_baseline = backend.calc_revisions_from_build(
                    build, workspace, launcher, sink
                )
                if polling_baseline is not None:
                    self._record_revision_state(build, source_identity, polling_baseline)

            for listener in self.listeners:
                listener.on_checkout(
                    build, backend, workspace, sink, changelog_path, polling_baseline
                )

            backend.post_checkout(build, launcher, workspace, sink)

        except BaseException:
            if changelog_path is not None:
                self._discard_changelog(changelog_path)
            raise

        logger.info("Checkout of %s complete (build #%s)", source_identity, build.number)
        return CheckoutResult(
            changelog=changelog_path,
            baseline=baseline,
            polling_baseline=polling_baseline,
        )

    def _create_changelog_file(self, build: Run) -> Path:
        """Create an empty changelog file in the build's private directory."""
        fd, name = tempfile.mkstemp(
            prefix=scm_config.scm_changelog_prefix(),
            suffix=scm_config.scm_changelog_suffix(),
            dir=str(build.root_dir),
        )
        os.close(fd)
        path = Path(name)
        if os.name == "posix":
            try:
                os.chmod(path, scm_config.scm_changelog_mode())
            except OSError:
                self._delete(path)
                raise
        logger.debug("Created changelog file %s", path)
        return path

    def _resolve_baseline(
        self, build: Run, source_identity: Hashable
    ) -> Optional[RevisionSnapshot]:
        previous = build.previous_build
        if previous is None:
            return None
        with previous.lock:
            state = previous.get_action(MultiRevisionState)
            if state is None:
                return None
            return state.get(source_identity)

    def _record_revision_state(
        self, build: Run, source_identity: Hashable, snapshot: RevisionSnapshot
    ) -> None:
        with build.lock:
            state = build.get_action(MultiRevisionState)
            if state is None:
                state = MultiRevisionState()
                build.add_action(state)
            state.put(source_identity, snapshot)
        logger.debug("Recorded revision state %s for %s", snapshot, source_identity)

    @staticmethod
    def _is_untouched(path: Path, original_mtime: Optional[int]) -> bool:
        try:
            st = path.stat()
        except FileNotFoundError:
            return True
        return st.st_size == 0 and st.st_mtime_ns == original_mtime

    @staticmethod
    def _delete(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass

    def _discard_changelog(self, path: Path) -> None:
        try:
            self._delete(path)
        except OSError as exc:
            logger.warning("Failed to remove changelog %s: %s", path, exc)


class CheckoutStepDescriptor:
    """Static metadata and configuration checks for checkout steps."""

    function_name = "checkout"
    required_context = frozenset(REQUIRED_CONTEXT)

    def check_label(self, label: Optional[str]) -> FormValidation:
        """Validate a label entered for a checkout step."""
        if label is not None and len(label) > MAX_LABEL_LENGTH:
            return FormValidation.error(
                f"Label size exceeds maximum of {MAX_LABEL_LENGTH} characters."
            )
        return FormValidation.ok()


class CheckoutStep:
    """A pipeline step that checks out sources with some SCM backend.

    Either pass ``backend_factory`` or override ``create_backend()`` in a
    subclass. A new backend is created for every use.
    """

    descriptor = CheckoutStepDescriptor()

    def __init__(
        self,
        config: Optional[CheckoutConfig] = None,
        backend_factory: Optional[Callable[[], SCMBackend]] = None,
        listeners: Sequence[CheckoutListener] = (),
    ) -> None:
        self.config = config if config is not None else CheckoutConfig()
        self._backend_factory = backend_factory
        self.orchestrator = CheckoutOrchestrator(listeners)

    def create_backend(self) -> SCMBackend:
        if self._backend_factory is None:
            raise NotImplementedError(
                f"{type(self).__name__} must override create_backend() or pass backend_factory"
            )
        return self._backend_factory()

    def start(self, context: StepContext) -> "CheckoutStepExecution":
        """Label the step's flow node and return an execution for context."""
        label = self.config.label
        if label:
            if context.node is not None:
                context.node.add_action(LabelAction(label[:MAX_LABEL_LENGTH]))
            else:
                logger.debug("No flow node in step context, label %r not attached", label)
        return CheckoutStepExecution(self, context)

    def checkout(
        self,
        build: Run,
        workspace: Path,
        sink: LogSink,
        launcher: Launcher,
    ) -> CheckoutResult:
        return self.orchestrator.checkout(
            build, workspace, sink, launcher, self.config, self.create_backend()
        )


class CheckoutStepExecution:
    """Synchronous execution of a CheckoutStep in one StepContext."""

    def __init__(self, step: CheckoutStep, context: StepContext) -> None:
        self.step = step
        self.context = context

    def run(self) -> Dict[str, str]:
        """Perform the checkout and return the SCM environment variables.

        Returns:
            Environment entries contributed by the backend, sorted by name

        Raises:
            ValueError: If the context lacks a required entry
        """
        missing = self.context.missing()
        if missing:
            raise ValueError(f"Missing required step context: {', '.join(missing)}")

        ctx = self.context
        self.step.checkout(ctx.build, ctx.workspace, ctx.sink, ctx.launcher)

        env: Dict[str, str] = {}
        self.step.create_backend().build_environment(ctx.build, env)
        return dict(sorted(env.items()))
