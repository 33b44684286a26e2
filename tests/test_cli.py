from __future__ import annotations

import io
import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from specrun import cli
from specrun.config import get_settings
from specrun.state import ExecutionStateStore
from specrun.worktree import FakeGitOperations, Worktree, WorktreeConfig, WorktreeManager


@pytest.fixture(autouse=True)
def state_dir(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    for key in list(os.environ):
        if key.startswith("SPECRUN_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    path = tmp_path / "state"
    monkeypatch.setenv("SPECRUN_STATE_DIR", str(path))
    return path


@pytest.fixture()
def git() -> FakeGitOperations:
    return FakeGitOperations()


@pytest.fixture()
def manager(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, state_dir: Path, git) -> WorktreeManager:
    repo = tmp_path / "repo"
    repo.mkdir()
    instance = WorktreeManager(
        WorktreeConfig(base_dir=str(tmp_path / "ws"), prefix="wt-", copy_dirs=[]),
        state_dir,
        repo,
        git_ops=git,
        stdout=io.StringIO(),
    )
    monkeypatch.setattr(cli, "load_manager", lambda _settings: instance)
    return instance


def test_increment_exhaustion_exits_with_retry_code(state_dir: Path, capsys) -> None:
    for _ in range(2):
        assert cli.main(["state", "increment", "auth", "implement", "--max-retries", "2"]) == 0

    assert cli.main(["state", "increment", "auth", "implement", "--max-retries", "2"]) == 2

    captured = capsys.readouterr()
    assert "auth:implement: attempt 2/2" in captured.out
    assert "retry limit exhausted" in captured.err


def test_increment_uses_configured_max(monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    monkeypatch.setenv("SPECRUN_MAX_RETRIES", "1")

    assert cli.main(["state", "increment", "auth", "implement"]) == 0
    assert cli.main(["state", "increment", "auth", "implement"]) == 2


def test_usage_errors_exit_with_invalid_arguments() -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["state", "increment", "auth"])
    assert excinfo.value.code == 3


def test_missing_command_prints_help(capsys) -> None:
    assert cli.main([]) == 3
    assert "usage" in capsys.readouterr().out


def test_invalid_spec_name_is_a_failure(capsys) -> None:
    assert cli.main(["state", "increment", "auth:v2", "implement"]) == 1
    assert "must not contain" in capsys.readouterr().err


def test_state_show_json(state_dir: Path, capsys) -> None:
    store = ExecutionStateStore(state_dir)
    store.increment_retry("auth", "implement", 3)
    store.mark_phase_complete("auth", 1)
    store.mark_task_complete("billing", "T001")
    capsys.readouterr()

    assert cli.main(["state", "show", "auth", "--json"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert [r["phase"] for r in payload["retries"]] == ["implement"]
    assert payload["stage_states"][0]["completed_phases"] == [1]
    assert payload["task_states"] == []


def test_state_show_text(state_dir: Path, capsys) -> None:
    store = ExecutionStateStore(state_dir)
    store.mark_task_complete("auth", "T001")

    assert cli.main(["state", "show"]) == 0

    output = capsys.readouterr().out
    assert "tasks  auth" in output
    assert "T001" in output


def test_state_show_empty(capsys) -> None:
    assert cli.main(["state", "show"]) == 0
    assert "No execution state recorded." in capsys.readouterr().out


def test_state_reset_everything_for_spec(state_dir: Path) -> None:
    store = ExecutionStateStore(state_dir)
    store.increment_retry("auth", "plan", 3)
    store.increment_retry("auth", "implement", 3)
    store.increment_retry("billing", "implement", 3)
    store.mark_phase_complete("auth", 1)
    store.mark_task_complete("auth", "T001")

    assert cli.main(["state", "reset", "auth"]) == 0

    assert store.load_retry("auth", "plan", 3).count == 0
    assert store.load_retry("auth", "implement", 3).count == 0
    assert store.load_retry("billing", "implement", 3).count == 1
    assert store.load_stage_progress("auth") is None
    assert store.load_task_progress("auth") is None


def test_state_reset_single_phase(state_dir: Path) -> None:
    store = ExecutionStateStore(state_dir)
    store.increment_retry("auth", "plan", 3)
    store.increment_retry("auth", "implement", 3)
    store.mark_phase_complete("auth", 1)

    assert cli.main(["state", "reset", "auth", "--phase", "plan"]) == 0

    assert store.load_retry("auth", "plan", 3).count == 0
    assert store.load_retry("auth", "implement", 3).count == 1
    assert store.load_stage_progress("auth") is not None


def test_complete_phase_and_task(state_dir: Path) -> None:
    assert cli.main(["state", "complete-phase", "auth", "2"]) == 0
    assert cli.main(["state", "complete-task", "auth", "T003"]) == 0

    store = ExecutionStateStore(state_dir)
    assert store.load_stage_progress("auth").completed_phases == [2]
    assert store.load_task_progress("auth").completed_task_ids == ["T003"]


def test_worktree_create_and_list(manager: WorktreeManager, capsys) -> None:
    assert cli.main(["worktree", "create", "auth", "--branch", "feat/auth"]) == 0
    assert "Created worktree: auth" in capsys.readouterr().out

    assert cli.main(["worktree", "list"]) == 0
    output = capsys.readouterr().out
    assert output.splitlines()[0].startswith("NAME")
    assert "feat/auth" in output
    assert "active" in output


def test_worktree_list_empty(manager: WorktreeManager, capsys) -> None:
    assert cli.main(["worktree", "list"]) == 0
    assert "No worktrees tracked." in capsys.readouterr().out


def test_worktree_remove_reports_unsafe_reason(manager: WorktreeManager, git, capsys) -> None:
    worktree = manager.create("auth", "feat/auth")
    git.unpushed.add(worktree.path)

    assert cli.main(["worktree", "remove", "auth"]) == 1
    assert "unpushed commits" in capsys.readouterr().err

    assert cli.main(["worktree", "remove", "auth", "--force"]) == 0
    assert manager.list() == []


def test_worktree_remove_unknown(manager: WorktreeManager, capsys) -> None:
    assert cli.main(["worktree", "remove", "ghost"]) == 1
    assert "not found" in capsys.readouterr().err


def test_worktree_prune_messages(manager: WorktreeManager, capsys) -> None:
    assert cli.main(["worktree", "prune"]) == 0
    assert "No stale worktree entries found." in capsys.readouterr().out

    worktree = manager.create("auth", "feat/auth")
    Path(worktree.path).rmdir()

    assert cli.main(["worktree", "prune"]) == 0
    assert "Pruned 1 stale worktree entry" in capsys.readouterr().out


def test_worktree_status_rejects_unknown_value(manager: WorktreeManager) -> None:
    manager.create("auth", "feat/auth")

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["worktree", "status", "auth", "finished"])
    assert excinfo.value.code == 3

    assert cli.main(["worktree", "status", "auth", "merged"]) == 0
    assert manager.get("auth").merged_at is not None


def test_init_script_refuses_to_overwrite(tmp_path: Path, capsys) -> None:
    target = tmp_path / "setup.sh"

    assert cli.main(["worktree", "init-script", "--path", str(target)]) == 0
    assert target.exists()
    assert cli.main(["worktree", "init-script", "--path", str(target)]) == 1
    assert cli.main(["worktree", "init-script", "--path", str(target), "--force"]) == 0


def test_format_worktree_table_truncates_long_values() -> None:
    now = datetime(2025, 1, 1, 12, tzinfo=timezone.utc)
    worktree = Worktree(
        name="auth",
        path="/very/long/path/" + "x" * 60,
        branch="feature/" + "y" * 40,
        created_at=now - timedelta(hours=3),
    )

    table = cli.format_worktree_table([worktree], now=now)

    row = table.splitlines()[2]
    assert "..." in row
    assert "3 hours ago" in row


@pytest.mark.parametrize(
    ("delta", "expected"),
    [
        (timedelta(seconds=5), "just now"),
        (timedelta(minutes=5), "5 min ago"),
        (timedelta(days=2), "2 days ago"),
        (timedelta(days=30), "Dec 02, 2024"),
    ],
)
def test_relative_time(delta: timedelta, expected: str) -> None:
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert cli.relative_time(now - delta, now) == expected


def test_cli_state_dir_matches_server_settings(state_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SPECRUN_STATE_DIR", "state")
    get_settings.cache_clear()
    try:
        assert cli.load_settings().state_dir == get_settings().state_dir == state_dir.resolve()
    finally:
        get_settings.cache_clear()
