"""Git worktree lifecycle management with project-aware setup."""

from .copy import CopyDirsError, copy_dir, copy_dirs
from .git import (
    FakeGitOperations,
    GitCommandError,
    GitOperations,
    GitWorktreeEntry,
    SubprocessGitOperations,
    get_repo_root,
    parse_worktree_list,
)
from .manager import (
    InvalidNameError,
    InvalidStatusError,
    UncommittedChangesError,
    UnpushedCommitsError,
    UnsafeRemovalError,
    WorktreeError,
    WorktreeExistsError,
    WorktreeManager,
    WorktreeNotFoundError,
    WorktreePathError,
)
from .models import Worktree, WorktreeConfig, WorktreeRegistry, WorktreeStatus
from .registry import REGISTRY_FILE_NAME, RegistryError, load_registry, save_registry
from .setup import SetupResult, run_setup_script, write_default_setup_script

__all__ = [
    "CopyDirsError",
    "FakeGitOperations",
    "GitCommandError",
    "GitOperations",
    "GitWorktreeEntry",
    "InvalidNameError",
    "InvalidStatusError",
    "REGISTRY_FILE_NAME",
    "RegistryError",
    "SetupResult",
    "SubprocessGitOperations",
    "UncommittedChangesError",
    "UnpushedCommitsError",
    "UnsafeRemovalError",
    "Worktree",
    "WorktreeConfig",
    "WorktreeError",
    "WorktreeExistsError",
    "WorktreeManager",
    "WorktreeNotFoundError",
    "WorktreePathError",
    "WorktreeRegistry",
    "WorktreeStatus",
    "copy_dir",
    "copy_dirs",
    "get_repo_root",
    "load_registry",
    "parse_worktree_list",
    "run_setup_script",
    "save_registry",
    "write_default_setup_script",
]
