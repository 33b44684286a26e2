from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from specrun.state import (
    ExecutionStateStore,
    RetryExhaustedError,
    StatePersistenceError,
    STATE_FILE_NAME,
)


class StepClock:
    def __init__(self) -> None:
        self.current = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture()
def store(tmp_path: Path) -> ExecutionStateStore:
    return ExecutionStateStore(tmp_path / "state", clock=StepClock())


def _read(store: ExecutionStateStore) -> dict:
    return json.loads(store.path.read_text(encoding="utf-8"))


def test_missing_file_loads_zero_record(store: ExecutionStateStore) -> None:
    record = store.load_retry("auth", "implement", 3)

    assert record.count == 0
    assert record.last_attempt is None
    assert record.max_retries == 3
    assert record.can_retry()
    assert not store.path.exists()


def test_increment_until_exhausted(store: ExecutionStateStore) -> None:
    for expected in (1, 2, 3):
        record = store.increment_retry("auth", "implement", 3)
        assert record.count == expected
        assert record.last_attempt is not None

    before = store.path.read_text(encoding="utf-8")
    with pytest.raises(RetryExhaustedError) as excinfo:
        store.increment_retry("auth", "implement", 3)

    assert excinfo.value.count == 3
    assert excinfo.value.max_retries == 3
    assert excinfo.value.exit_code == 2
    assert store.path.read_text(encoding="utf-8") == before
    assert store.load_retry("auth", "implement", 3).count == 3


def test_zero_max_retries_is_exhausted_immediately(store: ExecutionStateStore) -> None:
    with pytest.raises(RetryExhaustedError):
        store.increment_retry("auth", "implement", 0)
    assert not store.path.exists()


def test_load_retry_reflects_current_max(store: ExecutionStateStore) -> None:
    store.increment_retry("auth", "implement", 3)

    record = store.load_retry("auth", "implement", 5)

    assert record.count == 1
    assert record.max_retries == 5


def test_reset_retry_zeroes_counter(store: ExecutionStateStore) -> None:
    store.increment_retry("auth", "implement", 3)
    store.increment_retry("auth", "implement", 3)

    store.reset_retry("auth", "implement")

    record = store.load_retry("auth", "implement", 3)
    assert record.count == 0
    assert record.last_attempt is None
    assert record.can_retry()


def test_reset_retry_without_record_does_not_write(store: ExecutionStateStore) -> None:
    store.reset_retry("auth", "implement")
    assert not store.path.exists()


def test_families_are_independent(store: ExecutionStateStore) -> None:
    store.increment_retry("auth", "implement", 3)
    store.mark_phase_complete("auth", 1)
    store.mark_task_complete("auth", "T001")

    store.reset_stage_progress("auth")

    assert store.load_stage_progress("auth") is None
    assert store.load_retry("auth", "implement", 3).count == 1
    assert store.load_task_progress("auth").completed_task_ids == ["T001"]

    raw = _read(store)
    assert set(raw) == {"retries", "stage_states", "task_states"}
    assert "auth:implement" in raw["retries"]


def test_mark_phase_complete_is_idempotent(store: ExecutionStateStore) -> None:
    first = store.mark_phase_complete("auth", 2)
    stamp = first.last_phase_attempt

    second = store.mark_phase_complete("auth", 2)

    assert second.completed_phases == [2]
    assert second.last_phase_attempt == stamp
    assert store.load_stage_progress("auth").is_phase_completed(2)
    assert not store.load_stage_progress("auth").is_phase_completed(3)


def test_mark_task_complete_is_idempotent(store: ExecutionStateStore) -> None:
    store.mark_task_complete("auth", "T001")
    store.mark_task_complete("auth", "T002")
    progress = store.mark_task_complete("auth", "T001")

    assert progress.completed_task_ids == ["T001", "T002"]
    assert store.load_task_progress("auth").is_task_completed("T002")


def test_reset_task_progress(store: ExecutionStateStore) -> None:
    store.mark_task_complete("auth", "T001")
    store.reset_task_progress("auth")
    assert store.load_task_progress("auth") is None


def test_save_stage_progress_round_trip(store: ExecutionStateStore) -> None:
    store.mark_phase_complete("billing", 1)
    progress = store.load_stage_progress("billing")
    progress.current_phase = 2
    progress.total_phases = 4
    store.save_stage_progress(progress)

    reloaded = store.load_stage_progress("billing")
    assert reloaded.current_phase == 2
    assert reloaded.total_phases == 4
    assert reloaded.completed_phases == [1]


def test_legacy_phase_states_are_migrated(store: ExecutionStateStore) -> None:
    store.state_dir.mkdir(parents=True)
    store.path.write_text(
        json.dumps(
            {
                "retries": {},
                "phase_states": {
                    "legacy": {"spec_name": "legacy", "completed_phases": [1, 2]},
                    "both": {"spec_name": "both", "completed_phases": [9]},
                },
                "stage_states": {"both": {"spec_name": "both", "completed_phases": [1]}},
            }
        ),
        encoding="utf-8",
    )

    assert store.load_stage_progress("legacy").completed_phases == [1, 2]
    assert store.load_stage_progress("both").completed_phases == [1]

    store.mark_task_complete("legacy", "T001")

    raw = _read(store)
    assert "phase_states" not in raw
    assert raw["stage_states"]["legacy"]["completed_phases"] == [1, 2]
    assert raw["stage_states"]["both"]["completed_phases"] == [1]


def test_zero_timestamps_load_as_unset(store: ExecutionStateStore) -> None:
    store.state_dir.mkdir(parents=True)
    store.path.write_text(
        json.dumps(
            {
                "retries": {
                    "auth:implement": {
                        "spec_name": "auth",
                        "phase": "implement",
                        "count": 1,
                        "last_attempt": "0001-01-01T00:00:00Z",
                        "max_retries": 3,
                    }
                }
            }
        ),
        encoding="utf-8",
    )

    record = store.load_retry("auth", "implement", 3)
    assert record.count == 1
    assert record.last_attempt is None


@pytest.mark.parametrize("content", ["{not json", "[]", '{"retries": {"x:y": {"count": -1}}}'])
def test_corrupt_document_loads_empty(store: ExecutionStateStore, content: str) -> None:
    store.state_dir.mkdir(parents=True)
    store.path.write_text(content, encoding="utf-8")

    document = store.load_document()

    assert document.retries == {}
    assert document.stage_states == {}
    assert document.task_states == {}


def test_corrupt_document_is_replaced_on_next_write(store: ExecutionStateStore) -> None:
    store.state_dir.mkdir(parents=True)
    store.path.write_text("{not json", encoding="utf-8")

    store.increment_retry("auth", "implement", 3)

    assert _read(store)["retries"]["auth:implement"]["count"] == 1


@pytest.mark.parametrize("spec_name", ["", "auth:v2"])
def test_invalid_spec_names_are_rejected(store: ExecutionStateStore, spec_name: str) -> None:
    with pytest.raises(ValueError):
        store.increment_retry(spec_name, "implement", 3)
    assert not store.path.exists()


def test_phase_names_may_contain_delimiter(store: ExecutionStateStore) -> None:
    store.increment_retry("auth", "phase:1", 3)
    assert "auth:phase:1" in _read(store)["retries"]


def test_write_failure_raises_persistence_error(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    store = ExecutionStateStore(blocker / "state")

    with pytest.raises(StatePersistenceError):
        store.mark_phase_complete("auth", 1)


def test_no_temp_files_left_behind(store: ExecutionStateStore) -> None:
    store.increment_retry("auth", "implement", 3)
    store.mark_phase_complete("auth", 1)

    assert sorted(p.name for p in store.state_dir.iterdir()) == [STATE_FILE_NAME]
