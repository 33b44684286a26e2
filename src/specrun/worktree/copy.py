"""Copy non-tracked directories into a new worktree."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Callable, Iterable

CopyFunc = Callable[[str, str, Iterable[str]], list[str]]


class CopyDirsError(OSError):
    """Raised when one of the configured directories fails to copy.

    ``copied`` lists the directories that were copied before the failure.
    """

    def __init__(self, directory: str, cause: Exception, copied: list[str]) -> None:
        self.directory = directory
        self.copied = copied
        super().__init__(f"copying '{directory}': {cause}")


def copy_dir(src: Path | str, dst: Path | str) -> None:
    """Recursively copy ``src`` into ``dst``, preserving file modes.

    Existing files in ``dst`` are overwritten and symlinks are copied as links.
    """

    source = Path(src)
    if not source.is_dir():
        raise NotADirectoryError(f"source '{source}' is not a directory")
    shutil.copytree(source, Path(dst), symlinks=True, dirs_exist_ok=True)


def copy_dirs(src_root: str, dst_root: str, dirs: Iterable[str]) -> list[str]:
    """Copy each directory in ``dirs`` from ``src_root`` to ``dst_root``.

    Missing source directories are skipped. Returns the directories copied.
    """

    copied: list[str] = []
    for directory in dirs:
        source = Path(src_root) / directory
        if not source.exists():
            continue
        try:
            copy_dir(source, Path(dst_root) / directory)
        except OSError as exc:
            raise CopyDirsError(directory, exc, copied) from exc
        copied.append(directory)
    return copied


__all__ = ["CopyDirsError", "CopyFunc", "copy_dir", "copy_dirs"]
