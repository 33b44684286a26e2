"""Configuration management for specrun."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .worktree.models import DEFAULT_COPY_DIRS, WorktreeConfig


class SpecrunSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    state_dir: Path = Field(
        default=Path("~/.specrun/state"), validation_alias="SPECRUN_STATE_DIR"
    )
    max_retries: int = Field(default=3, validation_alias="SPECRUN_MAX_RETRIES")
    log_level: str = Field(default="INFO", validation_alias="SPECRUN_LOG_LEVEL")
    worktree_base_dir: str = Field(default="", validation_alias="SPECRUN_WORKTREE_BASE_DIR")
    worktree_prefix: str = Field(default="", validation_alias="SPECRUN_WORKTREE_PREFIX")
    worktree_setup_script: str = Field(
        default="", validation_alias="SPECRUN_WORKTREE_SETUP_SCRIPT"
    )
    worktree_auto_setup: bool = Field(default=True, validation_alias="SPECRUN_WORKTREE_AUTO_SETUP")
    worktree_track_status: bool = Field(
        default=True, validation_alias="SPECRUN_WORKTREE_TRACK_STATUS"
    )
    worktree_copy_dirs: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_COPY_DIRS, validation_alias="SPECRUN_WORKTREE_COPY_DIRS"
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "SPECRUN_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("max_retries")
    @classmethod
    def _validate_max_retries(cls, value: int) -> int:
        if value < 0 or value > 10:
            raise ValueError("SPECRUN_MAX_RETRIES must be between 0 and 10")
        return value

    @field_validator("worktree_copy_dirs", mode="before")
    @classmethod
    def _parse_copy_dirs(cls, value):
        if value is None:
            return DEFAULT_COPY_DIRS
        if value == "":
            return ()
        if isinstance(value, (list, tuple)):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(os.pathsep) if part.strip())
        raise TypeError(
            "SPECRUN_WORKTREE_COPY_DIRS must be a list of directories or a path-separated string"
        )

    def worktree_config(self) -> WorktreeConfig:
        """Build the worktree configuration from the flat settings fields."""

        return WorktreeConfig(
            base_dir=self.worktree_base_dir,
            prefix=self.worktree_prefix,
            setup_script=self.worktree_setup_script,
            auto_setup=self.worktree_auto_setup,
            track_status=self.worktree_track_status,
            copy_dirs=list(self.worktree_copy_dirs),
        )


def load_settings() -> SpecrunSettings:
    """Read settings from the environment with user paths expanded."""

    settings = SpecrunSettings()
    settings.state_dir = settings.state_dir.expanduser().resolve()
    if settings.worktree_base_dir:
        settings.worktree_base_dir = str(Path(settings.worktree_base_dir).expanduser())
    return settings


@lru_cache(maxsize=1)
def get_settings() -> SpecrunSettings:
    """Return cached settings instance."""

    return load_settings()


__all__ = ["SpecrunSettings", "get_settings", "load_settings"]
