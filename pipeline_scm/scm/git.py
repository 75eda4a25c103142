"""Git SCM backend implementation."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .. import config as scm_config
from ..build.run import Run
from ..launcher.interface import InMemoryLogSink, Launcher, LauncherError, LogSink

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GitRevision:
    """Revision snapshot of a git checkout."""

    url: str
    commit: str
    ref: str

    def __str__(self) -> str:
        return f"{self.ref}@{self.commit[:12]}"


class GitBuildData:
    """Build action mapping each checked-out repository URL to its commit."""

    def __init__(self) -> None:
        self.commits: Dict[str, str] = {}


_GIT_URL_RE = re.compile(
    r"^(?:git://|git\+https?://|ssh://.*\.git|file://"
    r"|https?://(?:.*\.git|github\.com/|gitlab\.com/))"
)
_COMMIT_RE = re.compile(r"^[0-9a-f]{7,40}$")
_VERSION_RE = re.compile(r"^v|^\d+\.\d+")

# Explicit options win over the URL fragment, in this order
_REF_OPTIONS = ("branch", "tag", "commit")


def _classify_ref(ref: str) -> str:
    """Guess whether a URL fragment names a commit, a tag or a branch."""
    if _COMMIT_RE.match(ref):
        return "commit"
    if _VERSION_RE.match(ref):
        return "tag"
    return "branch"


class GitBackend:
    """SCM backend for git repositories.

    The URL fragment selects the ref to build (``repo.git#v1.2``), falling
    back to ``main``. All git commands run through the launcher passed to
    each call, so the same backend works on the host and in a container.
    """

    @staticmethod
    def is_scm_url(url: str) -> bool:
        """Check if URL is a git URL.

        Examples:
            >>> GitBackend.is_scm_url("git://example.com/repo.git")
            True
            >>> GitBackend.is_scm_url("svn://example.com/repo")
            False
        """
        return _GIT_URL_RE.match(url) is not None

    def __init__(self, url: str, options: Optional[Dict] = None):
        """
        Args:
            url: repository URL, optionally with a ``#ref`` fragment
            options: may pin the ref with a ``branch``, ``tag`` or
                ``commit`` key, overriding the fragment

        Examples:
            GitBackend("https://github.com/user/repo.git#main")
            GitBackend("git://example.com/repo.git", {"commit": "abc123"})
        """
        self.options = options or {}
        if "#" in url:
            self.url, fragment = url.rsplit("#", 1)
        else:
            self.url, fragment = url, ""

        pinned = next((name for name in _REF_OPTIONS if name in self.options), None)
        if pinned is not None:
            self.ref, self.ref_type = self.options[pinned], pinned
        elif fragment:
            self.ref, self.ref_type = fragment, _classify_ref(fragment)
        else:
            self.ref, self.ref_type = "main", "branch"

        logger.debug("Git source %s at %s %s", self.url, self.ref_type, self.ref)

    def source_identity(self) -> str:
        return f"git {self.url}"

    def checkout(
        self,
        build: Run,
        launcher: Launcher,
        workspace: Path,
        sink: LogSink,
        changelog_path: Optional[Path],
        baseline: Optional[GitRevision],
    ) -> None:
        """Clone or update the repository in workspace and check out the ref.

        A changelog is written only when the baseline is a different commit
        of this repository; otherwise changelog_path is left untouched.

        Raises:
            LauncherError: If a git command fails
        """
        workspace = Path(workspace)
        logger.info("Checking out git repo: %s -> %s", self.url, workspace)

        if (workspace / ".git").exists():
            self._git(launcher, sink, ["-C", str(workspace), "fetch", "--tags", "origin"],
                      f"Git fetch failed: {self.url}")
        else:
            workspace.mkdir(parents=True, exist_ok=True)
            clone_cmd = ["clone"]
            # Changelogs need history back to the baseline
            if self.ref_type != 'commit' and changelog_path is None:
                clone_cmd += ["--depth", "1", "--branch", self.ref]
            clone_cmd += [self.url, str(workspace)]
            self._git(launcher, sink, clone_cmd, f"Git clone failed: {self.url}")

        self._git(
            launcher, sink,
            ["-C", str(workspace), "checkout", "--force", "--detach", self._checkout_target()],
            f"Git checkout failed: {self.ref}",
        )

        commit = self._head_commit(launcher, workspace)
        with build.lock:
            data = build.get_action(GitBuildData)
            if data is None:
                data = GitBuildData()
                build.add_action(data)
            data.commits[self.url] = commit

        if (
            changelog_path is not None
            and isinstance(baseline, GitRevision)
            and baseline.url == self.url
            and baseline.commit != commit
        ):
            self._write_changelog(launcher, workspace, changelog_path, baseline.commit, commit)

        logger.info("Git checkout complete: ref=%s commit=%s", self.ref, commit)

    def calc_revisions_from_build(
        self,
        build: Run,
        workspace: Path,
        launcher: Launcher,
        sink: LogSink,
    ) -> Optional[GitRevision]:
        if not (Path(workspace) / ".git").exists():
            return None
        return GitRevision(
            url=self.url,
            commit=self._head_commit(launcher, Path(workspace)),
            ref=self.ref,
        )

    def post_checkout(
        self,
        build: Run,
        launcher: Launcher,
        workspace: Path,
        sink: LogSink,
    ) -> None:
        logger.debug("Post-checkout for %s in %s", self.url, workspace)

    def build_environment(self, build: Run, env: Dict[str, str]) -> None:
        env["GIT_URL"] = self.url
        if self.ref_type == 'branch':
            env["GIT_BRANCH"] = self.ref
        with build.lock:
            data = build.get_action(GitBuildData)
            commit = data.commits.get(self.url) if data is not None else None
        if commit:
            env["GIT_COMMIT"] = commit

    def _write_changelog(
        self,
        launcher: Launcher,
        workspace: Path,
        changelog_path: Path,
        since: str,
        commit: str,
    ) -> None:
        """Write the log of since..commit, unless since is gone from the repository.

        A baseline can vanish when upstream history is rewritten. The changelog
        is then left untouched rather than failing the checkout.
        """
        exit_code = launcher.launch(
            self._command(["-C", str(workspace), "cat-file", "-e", f"{since}^{{commit}}"]),
            InMemoryLogSink(),
        )
        if exit_code != 0:
            logger.warning(
                "Baseline commit %s not found in %s, skipping changelog", since, self.url
            )
            return

        changes = self._git_output(
            launcher,
            ["-C", str(workspace), "log", "--no-color", "--no-abbrev",
             "--format=raw", "--name-status", f"{since}..{commit}"],
            f"Git log failed: {since}..{commit}",
        )
        if changes:
            Path(changelog_path).write_text(changes + "\n", encoding="utf-8")

    def _checkout_target(self) -> str:
        if self.ref_type == 'branch':
            return f"origin/{self.ref}"
        return self.ref

    def _head_commit(self, launcher: Launcher, workspace: Path) -> str:
        return self._git_output(
            launcher,
            ["-C", str(workspace), "rev-parse", "HEAD"],
            f"Git rev-parse failed in {workspace}",
        )

    def _git(self, launcher: Launcher, sink: LogSink, args: Sequence[str], error: str) -> None:
        cmd = self._command(args)
        logger.debug("Git command: %s", cmd)
        exit_code = launcher.launch(cmd, sink)
        if exit_code != 0:
            raise LauncherError(f"{error} (exit code {exit_code})")

    def _git_output(self, launcher: Launcher, args: Sequence[str], error: str) -> str:
        capture = InMemoryLogSink()
        exit_code = launcher.launch(self._command(args), capture)
        if exit_code != 0:
            stderr = capture.stderr.decode("utf-8", errors="replace").strip()
            raise LauncherError(f"{error} (exit code {exit_code}): {stderr}")
        return capture.text()

    @staticmethod
    def _command(args: Sequence[str]) -> List[str]:
        return [scm_config.scm_git_executable(), *args]


def get_scm_backend(url: str, options: Optional[Dict] = None) -> GitBackend:
    """Factory function to get appropriate SCM backend for URL.

    Raises:
        ValueError: If URL is not recognized as valid SCM URL

    Example:
        backend = get_scm_backend("git://example.com/repo.git")
    """
    if GitBackend.is_scm_url(url):
        return GitBackend(url, options)
    else:
        raise ValueError(f"Unsupported SCM URL: {url}")
