"""
Version-control boundary.

`stage`, `commit` and `push`, each reporting failure as an exception.
`GitVersionControl` drives the git CLI through subprocess.
"""

import logging
import os
import subprocess
from abc import ABC, abstractmethod
from typing import List, Sequence

from speccorpus.exceptions import PushRejected, VersionControlError

logger = logging.getLogger(__name__)

_REJECTION_MARKERS = ("[rejected]", "non-fast-forward", "fetch first", "failed to push some refs")


class VersionControl(ABC):
    """Interface the publish gate talks to."""

    @abstractmethod
    def stage(self, paths: Sequence[str]) -> None:
        ...

    @abstractmethod
    def unstage(self, paths: Sequence[str]) -> None:
        ...

    @abstractmethod
    def commit(self, message: str) -> str:
        """Create a commit and return its id."""

    @abstractmethod
    def push(self) -> None:
        ...


class GitVersionControl(VersionControl):
    """
    git working tree at `repo_root`, pushing HEAD to `remote`/`branch`.
    """

    def __init__(self, repo_root: str, remote: str = "origin", branch: str = "main"):
        self.repo_root = repo_root
        self.remote = remote
        self.branch = branch

    def _run(self, *args: str) -> subprocess.CompletedProcess:
        logger.debug(f"git {' '.join(args)}")
        return subprocess.run(
            ["git", *args],
            cwd=self.repo_root,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )

    def _relative(self, paths: Sequence[str]) -> List[str]:
        root = os.path.abspath(self.repo_root)
        return [os.path.relpath(os.path.abspath(p), root) for p in paths]

    def stage(self, paths: Sequence[str]) -> None:
        if not paths:
            return
        result = self._run("add", "--all", "--", *self._relative(paths))
        if result.returncode != 0:
            raise VersionControlError(f"git add failed: {result.stderr.strip()}")

    def unstage(self, paths: Sequence[str]) -> None:
        if not paths:
            return
        result = self._run("reset", "-q", "--", *self._relative(paths))
        if result.returncode != 0:
            raise VersionControlError(f"git reset failed: {result.stderr.strip()}")

    def commit(self, message: str) -> str:
        # Nothing staged: a republish after a rejected push reuses the kept commit
        if self._run("diff", "--cached", "--quiet").returncode == 0 and \
                self._run("rev-parse", "--verify", "-q", "HEAD").returncode == 0:
            logger.info("Nothing new to commit, reusing HEAD")
            return self._head()
        result = self._run("commit", "-q", "-m", message)
        if result.returncode != 0:
            detail = result.stderr.strip() or result.stdout.strip()
            raise VersionControlError(f"git commit failed: {detail}")
        return self._head()

    def _head(self) -> str:
        head = self._run("rev-parse", "HEAD")
        if head.returncode != 0:
            raise VersionControlError(f"git rev-parse failed: {head.stderr.strip()}")
        return head.stdout.strip()

    def push(self) -> None:
        result = self._run("push", self.remote, f"HEAD:{self.branch}")
        if result.returncode == 0:
            return
        detail = result.stderr.strip()
        if any(marker in detail for marker in _REJECTION_MARKERS):
            raise PushRejected(detail)
        raise VersionControlError(f"git push failed: {detail}")
