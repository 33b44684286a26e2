"""File-backed execution state store.

Retry counters, stage progress and task progress for every spec live in one
JSON document (``retry.json``) under the state directory. The document is
re-read on every call so separate CLI invocations always see the latest
on-disk state, and every write goes through a temp file + rename so a reader
never observes a half-written document.

Load-mutate-save is serialized inside one process only. Two processes
mutating the same spec at the same time can still lose an update.
"""

from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator

from pydantic import ValidationError

from ..utils import atomic_write_text
from .errors import RetryExhaustedError, StatePersistenceError, StateStoreError
from .models import (
    KEY_DELIMITER,
    ExecutionStateDocument,
    RetryRecord,
    StageProgress,
    TaskProgress,
    retry_key,
)

STATE_FILE_NAME = "retry.json"

logger = logging.getLogger(__name__)

_locks_guard = threading.Lock()
_locks: dict[Path, threading.RLock] = {}


def _lock_for(path: Path) -> threading.RLock:
    with _locks_guard:
        lock = _locks.get(path)
        if lock is None:
            lock = _locks[path] = threading.RLock()
        return lock


def _check_spec_name(spec_name: str) -> None:
    if not spec_name:
        raise ValueError("Spec name must not be empty")
    if KEY_DELIMITER in spec_name:
        raise ValueError(f"Spec name '{spec_name}' must not contain '{KEY_DELIMITER}'")


class ExecutionStateStore:
    """Persist retry, stage and task progress for specs under ``state_dir``."""

    def __init__(
        self,
        state_dir: Path | str,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._state_dir = Path(state_dir).expanduser()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    @property
    def path(self) -> Path:
        return self._state_dir / STATE_FILE_NAME

    @contextmanager
    def _mutation(self) -> Iterator[None]:
        with _lock_for(self.path.absolute()):
            yield

    def load_document(self) -> ExecutionStateDocument:
        """Read the whole document, substituting an empty one when unusable."""

        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ExecutionStateDocument()
        except OSError as exc:
            logger.warning(
                "Unable to read execution state; starting empty",
                extra={"path": str(self.path), "error": str(exc)},
            )
            return ExecutionStateDocument()

        try:
            return ExecutionStateDocument.from_raw(json.loads(text))
        except (ValueError, TypeError) as exc:
            # json.JSONDecodeError and pydantic's ValidationError are both ValueErrors.
            logger.warning(
                "Execution state is corrupt; starting empty",
                extra={"path": str(self.path), "error": str(exc)},
            )
            return ExecutionStateDocument()

    def _save_document(self, document: ExecutionStateDocument) -> None:
        try:
            self._state_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StatePersistenceError(
                f"failed to create state directory {self._state_dir}: {exc}"
            ) from exc

        payload = json.dumps(document.to_json_dict(), indent=2)
        try:
            atomic_write_text(self.path, payload + "\n")
        except OSError as exc:
            raise StatePersistenceError(f"failed to write {self.path}: {exc}") from exc

    # Retry counters

    def load_retry(self, spec_name: str, phase: str, max_retries: int) -> RetryRecord:
        """Return the stored record, or a fresh zero-count record.

        ``max_retries`` always reflects the caller's current configuration.
        """

        _check_spec_name(spec_name)
        record = self.load_document().retries.get(retry_key(spec_name, phase))
        if record is None:
            return RetryRecord(spec_name=spec_name, phase=phase, max_retries=max_retries)
        record.max_retries = max_retries
        return record

    def save_retry(self, record: RetryRecord) -> None:
        _check_spec_name(record.spec_name)
        with self._mutation():
            document = self.load_document()
            document.retries[record.key] = record
            self._save_document(document)

    def increment_retry(self, spec_name: str, phase: str, max_retries: int) -> RetryRecord:
        """Consume one attempt and persist it.

        Raises ``RetryExhaustedError`` without writing anything when the
        record is already at ``max_retries``.
        """

        with self._mutation():
            record = self.load_retry(spec_name, phase, max_retries)
            record.increment(self._clock())
            self.save_retry(record)
        logger.debug(
            "Recorded retry attempt",
            extra={"spec": spec_name, "phase": phase, "count": record.count},
        )
        return record

    def reset_retry(self, spec_name: str, phase: str) -> None:
        _check_spec_name(spec_name)
        with self._mutation():
            document = self.load_document()
            record = document.retries.get(retry_key(spec_name, phase))
            if record is None:
                return
            record.reset()
            self._save_document(document)

    # Stage progress

    def load_stage_progress(self, spec_name: str) -> StageProgress | None:
        return self.load_document().stage_states.get(spec_name)

    def save_stage_progress(self, progress: StageProgress) -> None:
        with self._mutation():
            document = self.load_document()
            document.stage_states[progress.spec_name] = progress
            self._save_document(document)

    def mark_phase_complete(self, spec_name: str, phase_index: int) -> StageProgress:
        """Add ``phase_index`` to the completed phases. Re-marking is a no-op."""

        with self._mutation():
            progress = self.load_stage_progress(spec_name) or StageProgress(spec_name=spec_name)
            if progress.is_phase_completed(phase_index):
                return progress
            progress.completed_phases.append(phase_index)
            progress.last_phase_attempt = self._clock()
            self.save_stage_progress(progress)
        return progress

    def reset_stage_progress(self, spec_name: str) -> None:
        with self._mutation():
            document = self.load_document()
            if document.stage_states.pop(spec_name, None) is None:
                return
            self._save_document(document)

    # Task progress

    def load_task_progress(self, spec_name: str) -> TaskProgress | None:
        return self.load_document().task_states.get(spec_name)

    def save_task_progress(self, progress: TaskProgress) -> None:
        with self._mutation():
            document = self.load_document()
            document.task_states[progress.spec_name] = progress
            self._save_document(document)

    def mark_task_complete(self, spec_name: str, task_id: str) -> TaskProgress:
        """Add ``task_id`` to the completed tasks. Re-marking is a no-op."""

        with self._mutation():
            progress = self.load_task_progress(spec_name) or TaskProgress(spec_name=spec_name)
            if progress.is_task_completed(task_id):
                return progress
            progress.completed_task_ids.append(task_id)
            progress.last_task_attempt = self._clock()
            self.save_task_progress(progress)
        return progress

    def reset_task_progress(self, spec_name: str) -> None:
        with self._mutation():
            document = self.load_document()
            if document.task_states.pop(spec_name, None) is None:
                return
            self._save_document(document)


__all__ = [
    "ExecutionStateStore",
    "RetryExhaustedError",
    "STATE_FILE_NAME",
    "StatePersistenceError",
    "StateStoreError",
]
