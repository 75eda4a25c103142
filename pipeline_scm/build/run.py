"""Build records and the jobs that produce them."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, List, Optional, Protocol, Type, TypeVar

logger = logging.getLogger(__name__)

A = TypeVar("A")


class Run(Protocol):
    """Build record as seen by checkout steps.

    Implementations must:
    - Provide a private storage directory (``root_dir``) that exists.
    - Link to the previous build of the same job, if any.
    - Expose a re-entrant ``lock`` scoped to this record; action lookup
      followed by ``add_action`` is only atomic while it is held.
    """

    number: int
    root_dir: Path
    lock: Any

    @property
    def previous_build(self) -> Optional["Run"]:  # pragma: no cover - protocol
        ...

    def get_action(self, action_type: Type[A]) -> Optional[A]:  # pragma: no cover - protocol
        ...

    def get_actions(self, action_type: Type[A]) -> List[A]:  # pragma: no cover - protocol
        ...

    def add_action(self, action: Any) -> None:  # pragma: no cover - protocol
        ...


class BuildRun:
    """In-process build record holding a list of attached actions."""

    def __init__(
        self,
        number: int,
        root_dir: Path,
        previous_build: Optional["BuildRun"] = None,
    ) -> None:
        self.number = number
        self.root_dir = Path(root_dir)
        self.root_dir.mkdir(parents=True, exist_ok=True)
        self._previous_build = previous_build
        self._actions: List[Any] = []
        self.lock = threading.RLock()

    @property
    def previous_build(self) -> Optional["BuildRun"]:
        return self._previous_build

    def get_action(self, action_type: Type[A]) -> Optional[A]:
        """Return the first attached action of action_type, or None."""
        with self.lock:
            for action in self._actions:
                if isinstance(action, action_type):
                    return action
        return None

    def get_actions(self, action_type: Type[A]) -> List[A]:
        with self.lock:
            return [a for a in self._actions if isinstance(a, action_type)]

    def add_action(self, action: Any) -> None:
        with self.lock:
            self._actions.append(action)
        logger.debug("Build #%d: attached %s", self.number, type(action).__name__)

    def __repr__(self) -> str:
        return f"BuildRun(number={self.number}, root_dir={str(self.root_dir)!r})"


class Job:
    """Sequence of builds of one pipeline, stored under a common directory.

    Example:
        job = Job(Path("/var/lib/pipelines/app"))
        first = job.new_build()
        second = job.new_build()
        assert second.previous_build is first
    """

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = Path(root_dir)
        self._builds: List[BuildRun] = []
        self._lock = threading.Lock()

    @property
    def last_build(self) -> Optional[BuildRun]:
        with self._lock:
            return self._builds[-1] if self._builds else None

    def new_build(self) -> BuildRun:
        """Allocate the next build record, linked to the current last build."""
        with self._lock:
            previous = self._builds[-1] if self._builds else None
            number = previous.number + 1 if previous else 1
            build = BuildRun(
                number,
                self.root_dir / "builds" / str(number),
                previous_build=previous,
            )
            self._builds.append(build)
        logger.info("Created build #%d in %s", number, build.root_dir)
        return build

    def get_build(self, number: int) -> Optional[BuildRun]:
        with self._lock:
            for build in self._builds:
                if build.number == number:
                    return build
        return None
