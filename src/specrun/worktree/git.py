"""Git operations used by the worktree manager."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, Sequence

DETACHED_BRANCH = "(detached)"


class GitCommandError(RuntimeError):
    """Raised when a git command exits unsuccessfully."""

    def __init__(self, args: Sequence[str], returncode: int, output: str) -> None:
        self.args_list = tuple(args)
        self.returncode = returncode
        self.output = output
        detail = output.strip() or f"exit code {returncode}"
        super().__init__(f"{' '.join(self.args_list)}: {detail}")


@dataclass(slots=True)
class GitWorktreeEntry:
    """One entry from ``git worktree list --porcelain``."""

    path: str
    commit: str = ""
    branch: str = ""


class GitOperations(Protocol):
    """Port for the git commands the manager depends on."""

    def add(self, repo_path: str, worktree_path: str, branch: str) -> None:
        ...

    def remove(self, repo_path: str, worktree_path: str, force: bool) -> None:
        ...

    def list(self, repo_path: str) -> list[GitWorktreeEntry]:
        ...

    def has_uncommitted_changes(self, path: str) -> bool:
        ...

    def has_unpushed_commits(self, path: str) -> bool:
        ...

    def is_worktree(self, path: str) -> bool:
        ...


def _run_git(args: Sequence[str], cwd: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
    )


def _check_git(args: Sequence[str], cwd: str) -> str:
    result = _run_git(args, cwd)
    if result.returncode != 0:
        raise GitCommandError(["git", *args], result.returncode, result.stderr or result.stdout)
    return result.stdout


def parse_worktree_list(output: str) -> list[GitWorktreeEntry]:
    """Parse porcelain worktree output, skipping bare repositories."""

    entries: list[GitWorktreeEntry] = []
    current: GitWorktreeEntry | None = None
    is_bare = False

    for line in output.splitlines():
        if line.startswith("worktree "):
            if current is not None and not is_bare:
                entries.append(current)
            current = GitWorktreeEntry(path=line[len("worktree "):])
            is_bare = False
        elif current is None:
            continue
        elif line.startswith("HEAD "):
            current.commit = line[len("HEAD "):]
        elif line.startswith("branch "):
            current.branch = line[len("branch "):].removeprefix("refs/heads/")
        elif line == "bare":
            is_bare = True
        elif line == "detached":
            current.branch = DETACHED_BRANCH

    if current is not None and not is_bare:
        entries.append(current)
    return entries


def get_repo_root(path: str | Path = ".") -> str:
    """Return the top-level directory of the repository containing ``path``."""

    return _check_git(["rev-parse", "--show-toplevel"], str(path)).strip()


class SubprocessGitOperations:
    """``GitOperations`` backed by the ``git`` executable."""

    def add(self, repo_path: str, worktree_path: str, branch: str) -> None:
        result = _run_git(["worktree", "add", "-b", branch, worktree_path], repo_path)
        if result.returncode == 0:
            return
        output = (result.stderr or "") + (result.stdout or "")
        if "already exists" in output:
            # The branch exists already; check it out instead of creating it.
            _check_git(["worktree", "add", worktree_path, branch], repo_path)
            return
        raise GitCommandError(
            ["git", "worktree", "add", "-b", branch, worktree_path], result.returncode, output
        )

    def remove(self, repo_path: str, worktree_path: str, force: bool) -> None:
        args = ["worktree", "remove", worktree_path]
        if force:
            args.append("--force")
        _check_git(args, repo_path)

    def list(self, repo_path: str) -> list[GitWorktreeEntry]:
        return parse_worktree_list(_check_git(["worktree", "list", "--porcelain"], repo_path))

    def has_uncommitted_changes(self, path: str) -> bool:
        return bool(_check_git(["status", "--porcelain"], path).strip())

    def has_unpushed_commits(self, path: str) -> bool:
        """Report commits missing from the upstream.

        A branch without an upstream counts as unpushed. A detached HEAD does not.
        """

        branch = _check_git(["rev-parse", "--abbrev-ref", "HEAD"], path).strip()
        if branch == "HEAD":
            return False

        upstream = _run_git(["rev-parse", "--abbrev-ref", f"{branch}@{{upstream}}"], path)
        if upstream.returncode != 0:
            return True

        count = _check_git(["rev-list", "--count", f"{branch}@{{upstream}}..HEAD"], path).strip()
        return count != "0"

    def is_worktree(self, path: str) -> bool:
        try:
            result = _run_git(["rev-parse", "--is-inside-work-tree"], path)
        except OSError:
            return False
        return result.returncode == 0 and result.stdout.strip() == "true"


@dataclass
class FakeGitOperations:
    """In-memory test double for ``GitOperations``.

    ``add`` creates the worktree directory so filesystem checks behave as they
    would after a real ``git worktree add``.
    """

    uncommitted: set[str] = field(default_factory=set)
    unpushed: set[str] = field(default_factory=set)
    worktrees: dict[str, str] = field(default_factory=dict)
    calls: list[tuple[str, ...]] = field(default_factory=list)
    fail_add: Exception | None = None

    def add(self, repo_path: str, worktree_path: str, branch: str) -> None:
        self.calls.append(("add", repo_path, worktree_path, branch))
        if self.fail_add is not None:
            raise self.fail_add
        Path(worktree_path).mkdir(parents=True, exist_ok=True)
        self.worktrees[worktree_path] = branch

    def remove(self, repo_path: str, worktree_path: str, force: bool) -> None:
        self.calls.append(("remove", repo_path, worktree_path, str(force)))
        self.worktrees.pop(worktree_path, None)

    def list(self, repo_path: str) -> list[GitWorktreeEntry]:
        self.calls.append(("list", repo_path))
        return [GitWorktreeEntry(path=path, branch=branch) for path, branch in self.worktrees.items()]

    def has_uncommitted_changes(self, path: str) -> bool:
        return path in self.uncommitted

    def has_unpushed_commits(self, path: str) -> bool:
        return path in self.unpushed

    def is_worktree(self, path: str) -> bool:
        return path in self.worktrees


__all__ = [
    "DETACHED_BRANCH",
    "FakeGitOperations",
    "GitCommandError",
    "GitOperations",
    "GitWorktreeEntry",
    "SubprocessGitOperations",
    "get_repo_root",
    "parse_worktree_list",
]
