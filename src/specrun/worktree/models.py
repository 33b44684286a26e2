"""Worktree tracking models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

DEFAULT_COPY_DIRS: tuple[str, ...] = (".specrun", ".claude")


class WorktreeStatus(str, Enum):
    """Lifecycle state of a tracked worktree."""

    ACTIVE = "active"
    MERGED = "merged"
    ABANDONED = "abandoned"
    STALE = "stale"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]


class Worktree(BaseModel):
    """A git worktree together with its tracking metadata."""

    name: str = Field(..., description="Unique identifier of the worktree.")
    path: str = Field(..., description="Absolute filesystem path of the worktree.")
    branch: str = Field(..., description="Branch checked out in the worktree.")
    status: WorktreeStatus = Field(default=WorktreeStatus.ACTIVE)
    created_at: datetime
    setup_completed: bool = Field(
        default=False,
        description="Whether the setup automation finished successfully.",
    )
    last_accessed: datetime | None = None
    merged_at: datetime | None = Field(
        default=None,
        description="Set only when the worktree transitions to 'merged'.",
    )

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Worktree name must not be empty")
        return normalized

    def path_exists(self) -> bool:
        return Path(self.path).exists()


class WorktreeRegistry(BaseModel):
    """Container persisted to ``worktrees.yaml``."""

    version: str = "1.0.0"
    worktrees: list[Worktree] = Field(default_factory=list)

    @field_validator("worktrees", mode="before")
    @classmethod
    def _ensure_list(cls, value):  # type: ignore[override]
        if value is None:
            return []
        return value

    def find(self, name: str) -> Worktree | None:
        for worktree in self.worktrees:
            if worktree.name == name:
                return worktree
        return None

    def add(self, worktree: Worktree) -> None:
        """Append a worktree, rejecting duplicate names."""

        if self.find(worktree.name) is not None:
            raise ValueError(f"Worktree '{worktree.name}' already exists")
        self.worktrees.append(worktree)

    def remove(self, name: str) -> bool:
        """Drop the named worktree. Returns False when it was not tracked."""

        for index, worktree in enumerate(self.worktrees):
            if worktree.name == name:
                del self.worktrees[index]
                return True
        return False

    def update(self, worktree: Worktree) -> None:
        for index, existing in enumerate(self.worktrees):
            if existing.name == worktree.name:
                self.worktrees[index] = worktree
                return
        raise KeyError(f"Worktree '{worktree.name}' not found")


class WorktreeConfig(BaseModel):
    """Defaults applied when creating or setting up worktrees."""

    base_dir: str = Field(
        default="",
        description="Parent directory for new worktrees (empty means the parent of the repo root).",
    )
    prefix: str = Field(default="", description="Directory name prefix for new worktrees.")
    setup_script: str = Field(
        default="",
        description="Setup script path, relative paths resolve against the repo root.",
    )
    auto_setup: bool = Field(default=True, description="Run the setup script on create.")
    track_status: bool = Field(default=True, description="Persist worktrees to the registry.")
    copy_dirs: list[str] = Field(
        default_factory=lambda: list(DEFAULT_COPY_DIRS),
        description="Non-tracked directories copied into every new worktree.",
    )

    @field_validator("copy_dirs", mode="before")
    @classmethod
    def _ensure_copy_dirs(cls, value):  # type: ignore[override]
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value]
        raise TypeError("copy_dirs must be a list of directory names")


__all__ = [
    "DEFAULT_COPY_DIRS",
    "Worktree",
    "WorktreeConfig",
    "WorktreeRegistry",
    "WorktreeStatus",
]
