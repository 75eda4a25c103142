"""SCM integration module for source checkout operations.

Provides protocol-based abstraction for different SCM backends.
"""

from .base import RevisionSnapshot, SCMBackend
from .git import GitBackend, GitBuildData, GitRevision, get_scm_backend

__all__ = [
    "GitBackend",
    "GitBuildData",
    "GitRevision",
    "RevisionSnapshot",
    "SCMBackend",
    "get_scm_backend",
]
