"""Create, track and tear down isolated git worktrees."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, TextIO

from .copy import CopyFunc, copy_dirs
from .git import GitCommandError, GitOperations, SubprocessGitOperations
from .models import Worktree, WorktreeConfig, WorktreeStatus
from .registry import load_registry, save_registry
from .setup import SetupFunc, run_setup_script

UNKNOWN_BRANCH = "unknown"

logger = logging.getLogger(__name__)


class WorktreeError(RuntimeError):
    """Base class for worktree manager errors."""


class WorktreeExistsError(WorktreeError):
    """Raised when creating a worktree whose name is already tracked."""


class WorktreeNotFoundError(WorktreeError):
    """Raised when a worktree name is not tracked."""


class WorktreePathError(WorktreeError):
    """Raised when a path handed to ``setup`` is missing or not a worktree."""


class InvalidStatusError(WorktreeError, ValueError):
    """Raised for status values outside the recognized set."""


class InvalidNameError(WorktreeError, ValueError):
    """Raised for blank worktree names."""


class UnsafeRemovalError(WorktreeError):
    """Raised when removal would discard work. Retry with ``force`` to override."""

    reason = "unsafe"


class UncommittedChangesError(UnsafeRemovalError):
    reason = "uncommitted"


class UnpushedCommitsError(UnsafeRemovalError):
    reason = "unpushed"


class WorktreeManager:
    """Worktree lifecycle operations backed by a YAML registry in ``state_dir``.

    Git commands, directory copying and setup-script execution are injected so
    tests can substitute them without a real repository.
    """

    def __init__(
        self,
        config: WorktreeConfig | None,
        state_dir: Path | str,
        repo_root: Path | str,
        *,
        git_ops: GitOperations | None = None,
        copy_fn: CopyFunc | None = None,
        setup_fn: SetupFunc | None = None,
        stdout: TextIO | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config or WorktreeConfig()
        self._state_dir = Path(state_dir)
        self._repo_root = str(repo_root)
        self._git = git_ops or SubprocessGitOperations()
        self._copy = copy_fn or copy_dirs
        self._run_setup = setup_fn or run_setup_script
        self._stdout = stdout
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def config(self) -> WorktreeConfig:
        return self._config

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    def resolve_path(self, name: str, custom_path: str | None = None) -> str:
        """Return the target directory for a new worktree."""

        if custom_path:
            candidate = Path(custom_path)
            if candidate.is_absolute():
                return str(candidate)
            return str(Path(self._repo_root) / candidate)

        base_dir = self._config.base_dir or str(Path(self._repo_root).parent)
        return str(Path(base_dir) / f"{self._config.prefix}{name}")

    @staticmethod
    def _normalize_name(name: str) -> str:
        # Must match Worktree's own normalization so duplicate checks see the stored name.
        normalized = name.strip()
        if not normalized:
            raise InvalidNameError("Worktree name must not be empty")
        return normalized

    def create(self, name: str, branch: str, custom_path: str | None = None) -> Worktree:
        name = self._normalize_name(name)
        registry = load_registry(self._state_dir)
        if registry.find(name) is not None:
            raise WorktreeExistsError(f"Worktree '{name}' already exists")

        worktree_path = self.resolve_path(name, custom_path)
        try:
            self._git.add(self._repo_root, worktree_path, branch)
        except GitCommandError as exc:
            raise WorktreeError(f"creating git worktree: {exc}") from exc

        self._copy_configured_dirs(worktree_path)
        setup_completed = self._run_setup_if_configured(worktree_path, name, branch)

        now = self._clock()
        worktree = Worktree(
            name=name,
            path=worktree_path,
            branch=branch,
            status=WorktreeStatus.ACTIVE,
            created_at=now,
            setup_completed=setup_completed,
            last_accessed=now,
        )

        if self._config.track_status:
            registry.add(worktree)
            save_registry(self._state_dir, registry)

        logger.info(
            "Created worktree",
            extra={"worktree": name, "path": worktree_path, "branch": branch},
        )
        return worktree

    def _copy_configured_dirs(self, worktree_path: str) -> None:
        if not self._config.copy_dirs:
            return
        try:
            copied = self._copy(self._repo_root, worktree_path, self._config.copy_dirs)
        except Exception as exc:  # copy failures never abort create or setup
            logger.warning(
                "Failed to copy directories into worktree",
                extra={"path": worktree_path, "error": str(exc)},
            )
            return
        if copied:
            logger.info("Copied directories", extra={"path": worktree_path, "dirs": copied})

    def _run_setup_if_configured(self, worktree_path: str, name: str, branch: str) -> bool:
        """Run the setup script and report whether setup counts as completed.

        No configured script, auto-setup disabled, or a missing script file all
        count as completed.
        """

        if not self._config.auto_setup or not self._config.setup_script:
            return True

        result = self._run_setup(
            self._config.setup_script,
            worktree_path,
            name,
            branch,
            self._repo_root,
            self._stdout,
        )
        if result.error is not None:
            logger.warning(
                "Setup script failed",
                extra={"worktree": name, "error": result.error},
            )
            return False
        return True

    def list(self) -> list[Worktree]:
        """Return tracked worktrees, marking those whose path is gone as stale.

        The registry itself is not rewritten.
        """

        registry = load_registry(self._state_dir)
        for worktree in registry.worktrees:
            if not worktree.path_exists():
                worktree.status = WorktreeStatus.STALE
        return registry.worktrees

    def get(self, name: str) -> Worktree:
        worktree = load_registry(self._state_dir).find(name)
        if worktree is None:
            raise WorktreeNotFoundError(f"Worktree '{name}' not found")
        return worktree

    def remove(self, name: str, force: bool = False) -> None:
        registry = load_registry(self._state_dir)
        worktree = registry.find(name)
        if worktree is None:
            raise WorktreeNotFoundError(f"Worktree '{name}' not found")

        if not force:
            self._check_safe_to_remove(worktree.path)

        try:
            self._git.remove(self._repo_root, worktree.path, force)
        except GitCommandError as exc:
            raise WorktreeError(f"removing git worktree: {exc}") from exc

        registry.remove(name)
        save_registry(self._state_dir, registry)
        logger.info("Removed worktree", extra={"worktree": name, "force": force})

    def _check_safe_to_remove(self, path: str) -> None:
        if not Path(path).exists():
            return

        try:
            has_changes = self._git.has_uncommitted_changes(path)
        except GitCommandError as exc:
            raise WorktreeError(f"checking uncommitted changes: {exc}") from exc
        if has_changes:
            raise UncommittedChangesError(
                "worktree has uncommitted changes (use --force to override)"
            )

        try:
            has_unpushed = self._git.has_unpushed_commits(path)
        except GitCommandError as exc:
            raise WorktreeError(f"checking unpushed commits: {exc}") from exc
        if has_unpushed:
            raise UnpushedCommitsError("worktree has unpushed commits (use --force to override)")

    def setup(self, path: str, track: bool = False) -> Worktree:
        """Copy directories and run setup on a worktree created outside the manager."""

        abs_path = str(Path(path).expanduser().absolute())
        if not Path(abs_path).exists():
            raise WorktreePathError(f"path does not exist: {abs_path}")
        if not self._git.is_worktree(abs_path):
            raise WorktreePathError(f"path is not a git worktree: {abs_path}")

        name = self._normalize_name(Path(abs_path).name)
        registry = None
        if track and self._config.track_status:
            registry = load_registry(self._state_dir)
            if registry.find(name) is not None:
                raise WorktreeExistsError(f"Worktree '{name}' already exists")

        self._copy_configured_dirs(abs_path)

        branch = self._branch_for_path(abs_path)
        setup_completed = self._run_setup_if_configured(abs_path, name, branch)

        now = self._clock()
        worktree = Worktree(
            name=name,
            path=abs_path,
            branch=branch,
            status=WorktreeStatus.ACTIVE,
            created_at=now,
            setup_completed=setup_completed,
            last_accessed=now,
        )

        if registry is not None:
            registry.add(worktree)
            save_registry(self._state_dir, registry)

        return worktree

    def _branch_for_path(self, path: str) -> str:
        try:
            entries = self._git.list(self._repo_root)
        except GitCommandError as exc:
            logger.debug("Unable to list worktrees", extra={"error": str(exc)})
            return UNKNOWN_BRANCH

        resolved = Path(path).resolve()
        for entry in entries:
            if entry.path == path or Path(entry.path).resolve() == resolved:
                return entry.branch or UNKNOWN_BRANCH
        return UNKNOWN_BRANCH

    def prune(self) -> int:
        """Drop registry entries whose path no longer exists. Returns how many."""

        registry = load_registry(self._state_dir)
        remaining = [worktree for worktree in registry.worktrees if worktree.path_exists()]
        pruned = len(registry.worktrees) - len(remaining)
        if pruned:
            registry.worktrees = remaining
            save_registry(self._state_dir, registry)
            logger.info("Pruned stale worktrees", extra={"count": pruned})
        return pruned

    def update_status(self, name: str, status: WorktreeStatus | str) -> Worktree:
        try:
            new_status = WorktreeStatus(status)
        except ValueError as exc:
            raise InvalidStatusError(
                f"invalid status: {status} (expected one of {', '.join(WorktreeStatus.values())})"
            ) from exc

        registry = load_registry(self._state_dir)
        worktree = registry.find(name)
        if worktree is None:
            raise WorktreeNotFoundError(f"Worktree '{name}' not found")

        now = self._clock()
        worktree.status = new_status
        worktree.last_accessed = now
        if new_status is WorktreeStatus.MERGED:
            worktree.merged_at = now

        registry.update(worktree)
        save_registry(self._state_dir, registry)
        return worktree


__all__ = [
    "InvalidNameError",
    "InvalidStatusError",
    "UncommittedChangesError",
    "UnpushedCommitsError",
    "UnsafeRemovalError",
    "WorktreeError",
    "WorktreeExistsError",
    "WorktreeManager",
    "WorktreeNotFoundError",
    "WorktreePathError",
]
