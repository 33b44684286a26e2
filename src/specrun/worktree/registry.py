"""Load and save the worktree registry (``worktrees.yaml``)."""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from ..utils import atomic_write_text
from .models import WorktreeRegistry

REGISTRY_FILE_NAME = "worktrees.yaml"
REGISTRY_VERSION = "1.0.0"

logger = logging.getLogger(__name__)


class RegistryError(RuntimeError):
    """Raised when the worktree registry cannot be read or written."""


def registry_path(state_dir: Path) -> Path:
    return Path(state_dir) / REGISTRY_FILE_NAME


def load_registry(state_dir: Path) -> WorktreeRegistry:
    """Return the persisted registry, or an empty one when the file is absent."""

    path = registry_path(state_dir)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return WorktreeRegistry(version=REGISTRY_VERSION)
    except OSError as exc:
        raise RegistryError(f"reading registry {path}: {exc}") from exc

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise RegistryError(f"parsing registry {path}: {exc}") from exc

    if document is None:
        return WorktreeRegistry(version=REGISTRY_VERSION)

    try:
        return WorktreeRegistry.model_validate(document)
    except ValidationError as exc:
        raise RegistryError(f"invalid registry {path}: {exc}") from exc


def save_registry(state_dir: Path, registry: WorktreeRegistry) -> None:
    """Persist the whole registry atomically, stamping the current schema version."""

    path = registry_path(state_dir)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise RegistryError(f"creating state directory {path.parent}: {exc}") from exc

    registry.version = REGISTRY_VERSION
    payload = yaml.safe_dump(
        registry.model_dump(mode="json", exclude_none=True),
        sort_keys=False,
        default_flow_style=False,
    )
    try:
        atomic_write_text(path, payload)
    except OSError as exc:
        raise RegistryError(f"writing registry {path}: {exc}") from exc
    logger.debug("Saved worktree registry", extra={"path": str(path), "count": len(registry.worktrees)})


__all__ = [
    "REGISTRY_FILE_NAME",
    "REGISTRY_VERSION",
    "RegistryError",
    "load_registry",
    "registry_path",
    "save_registry",
]
