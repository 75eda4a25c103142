"""Build records and the revision state persisted on them."""

from .revision_state import MultiRevisionState
from .run import BuildRun, Job, Run

__all__ = [
    "BuildRun",
    "Job",
    "MultiRevisionState",
    "Run",
]
