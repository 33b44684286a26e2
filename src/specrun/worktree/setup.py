"""Run the project setup script inside a freshly created worktree."""

from __future__ import annotations

import stat
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, TextIO

from ..utils import sanitize_environment


@dataclass(slots=True)
class SetupResult:
    """Outcome of a setup script run.

    Failures are recorded here instead of raised so the create/setup flow can
    finish and the caller decides how severe they are.
    """

    executed: bool = False
    output: str = ""
    error: str | None = None
    returncode: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


SetupFunc = Callable[[str, str, str, str, str, TextIO | None], SetupResult]


def build_setup_env(
    worktree_path: str, worktree_name: str, branch: str, source_repo: str
) -> dict[str, str]:
    return sanitize_environment(
        {
            "WORKTREE_PATH": worktree_path,
            "WORKTREE_NAME": worktree_name,
            "WORKTREE_BRANCH": branch,
            "SOURCE_REPO": source_repo,
        }
    )


def run_setup_script(
    script_path: str,
    worktree_path: str,
    worktree_name: str,
    branch: str,
    source_repo: str,
    output: TextIO | None = None,
) -> SetupResult:
    """Execute ``script_path`` with the worktree path, name and branch as arguments.

    Relative script paths resolve against ``source_repo``. A missing script is
    not an error and reports ``executed=False``. Combined stdout/stderr is
    captured and, when ``output`` is given, echoed to it as it arrives.
    """

    result = SetupResult()
    if not script_path:
        return result

    script = Path(script_path)
    if not script.is_absolute():
        script = Path(source_repo) / script

    try:
        mode = script.stat().st_mode
    except FileNotFoundError:
        return result
    except OSError as exc:
        result.error = f"checking setup script: {exc}"
        return result

    if not mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH):
        result.error = f"setup script is not executable: {script}"
        return result

    result.executed = True
    chunks: list[str] = []
    try:
        process = subprocess.Popen(
            [str(script), worktree_path, worktree_name, branch],
            cwd=worktree_path,
            env=build_setup_env(worktree_path, worktree_name, branch, source_repo),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
        )
    except OSError as exc:
        result.error = f"running setup script: {exc}"
        return result

    assert process.stdout is not None
    with process.stdout:
        for line in process.stdout:
            chunks.append(line)
            if output is not None:
                output.write(line)
    returncode = process.wait()

    result.output = "".join(chunks)
    result.returncode = returncode
    if returncode != 0:
        result.error = f"running setup script: exit status {returncode}"
    return result


DEFAULT_SETUP_SCRIPT = """#!/bin/bash
# Worktree setup script
# Arguments: $1 = worktree path, $2 = worktree name, $3 = branch name
# Environment: WORKTREE_PATH, WORKTREE_NAME, WORKTREE_BRANCH, SOURCE_REPO

set -e

WORKTREE_PATH="${1:-$WORKTREE_PATH}"
WORKTREE_NAME="${2:-$WORKTREE_NAME}"
WORKTREE_BRANCH="${3:-$WORKTREE_BRANCH}"

echo "Setting up worktree: $WORKTREE_NAME"
echo "Path: $WORKTREE_PATH"
echo "Branch: $WORKTREE_BRANCH"

cd "$WORKTREE_PATH"

# Add your project-specific setup commands below, for example:
#   pip install -e '.[test]'
#   npm install

echo "Setup complete!"
"""


def write_default_setup_script(path: Path | str) -> Path:
    """Write an executable template setup script to ``path``."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(DEFAULT_SETUP_SCRIPT, encoding="utf-8")
    target.chmod(target.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return target


__all__ = [
    "DEFAULT_SETUP_SCRIPT",
    "SetupFunc",
    "SetupResult",
    "build_setup_env",
    "run_setup_script",
    "write_default_setup_script",
]
