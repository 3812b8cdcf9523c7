"""Invocation context: working directory, repository root, git status summary."""

import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from clash.errors import ContextError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GitSummary:
    changed: int = 0
    untracked: int = 0

    @property
    def dirty(self) -> bool:
        return self.changed > 0 or self.untracked > 0


@dataclass(frozen=True)
class ContextSnapshot:
    """Read-only facts about where the command was issued."""

    cwd: str
    repo_root: str | None = None  # None when cwd is not inside a repository
    git: GitSummary = field(default_factory=GitSummary)

    @property
    def in_repo(self) -> bool:
        return self.repo_root is not None

    @property
    def base_dir(self) -> str:
        """Repository root when there is one, else cwd."""
        return self.repo_root or self.cwd


def detect_context() -> ContextSnapshot:
    """Collect cwd, repo root and git status. Raises ContextError if cwd is gone."""
    try:
        cwd = os.getcwd()
    except OSError as e:
        raise ContextError(f"Cannot determine working directory: {e}")

    repo_root = find_repo_root(cwd)
    git = git_status(repo_root) if repo_root else GitSummary()
    logger.debug("context cwd=%s repo_root=%s git=%s", cwd, repo_root, git)
    return ContextSnapshot(cwd=cwd, repo_root=repo_root, git=git)


def find_repo_root(start: str) -> str | None:
    """Walk up from *start* to the first directory holding .git (file or dir)."""
    cur = Path(start)
    for candidate in (cur, *cur.parents):
        if candidate == Path(candidate.anchor):
            return None
        if (candidate / ".git").exists():
            return str(candidate)
    return None


def git_status(repo_root: str) -> GitSummary:
    """Count porcelain status lines: '??' is untracked, anything else changed."""
    try:
        output = subprocess.check_output(
            ["git", "-C", repo_root, "status", "--porcelain"],
            stderr=subprocess.DEVNULL,
        ).decode()
    except (OSError, subprocess.CalledProcessError):
        return GitSummary()

    changed = untracked = 0
    for line in output.splitlines():
        if not line.strip():
            continue
        if line.startswith("??"):
            untracked += 1
        else:
            changed += 1
    return GitSummary(changed=changed, untracked=untracked)


def resolve_path(base: str, candidate: str) -> str:
    """Expand ~, anchor relative paths at *base*, then resolve symlinks.

    Raises OSError (FileNotFoundError included) when the path cannot be
    resolved; callers skip such targets.
    """
    if not candidate:
        raise FileNotFoundError("empty path")
    if candidate.startswith("~"):
        candidate = os.path.join(str(Path.home()), candidate[1:].lstrip("/"))
    path = Path(candidate)
    if not path.is_absolute():
        path = Path(base) / path
    return str(path.resolve(strict=True))


def is_inside_repo(repo_root: str | None, path: str) -> bool:
    if not repo_root:
        return False
    root = os.path.realpath(repo_root)
    rel = os.path.relpath(os.path.abspath(path), root)
    return rel == "." or not (rel == ".." or rel.startswith(".." + os.sep))
