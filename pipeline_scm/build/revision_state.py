"""Per-build revision state, keyed by SCM source identity."""

from __future__ import annotations

import logging
from typing import Any, Dict, Hashable, Iterator, Optional

logger = logging.getLogger(__name__)


class MultiRevisionState:
    """Revision snapshots recorded by every SCM checked out in one build.

    Attached to a build record as an action and read by the next build of
    the same job to obtain a baseline. Holds at most one snapshot per
    source identity; a later ``put`` for the same identity replaces the
    earlier one.

    Not internally synchronized. Callers hold the owning build record's
    ``lock`` across lookup-or-create and every read or write.
    """

    def __init__(self) -> None:
        self._revisions: Dict[Hashable, Any] = {}

    def get(self, source_identity: Hashable) -> Optional[Any]:
        """Return the snapshot stored for source_identity, or None."""
        return self._revisions.get(source_identity)

    def put(self, source_identity: Hashable, snapshot: Any) -> None:
        """Store snapshot for source_identity, replacing any earlier one."""
        if source_identity in self._revisions:
            logger.debug("Replacing revision state for %s", source_identity)
        self._revisions[source_identity] = snapshot

    def keys(self) -> Iterator[Hashable]:
        return iter(list(self._revisions))

    def __contains__(self, source_identity: object) -> bool:
        return source_identity in self._revisions

    def __len__(self) -> int:
        return len(self._revisions)

    def __repr__(self) -> str:
        return f"MultiRevisionState({self._revisions!r})"
