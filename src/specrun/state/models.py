"""Execution state models persisted to ``retry.json``."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .errors import RetryExhaustedError

KEY_DELIMITER = ":"
LEGACY_STAGE_FIELD = "phase_states"
STAGE_FIELD = "stage_states"


def _zero_time_to_none(value: Any) -> Any:
    # Older writers stored an unset timestamp as year 1 instead of omitting it.
    if isinstance(value, str) and value.startswith("0001-01-01"):
        return None
    if isinstance(value, datetime) and value.year == 1:
        return None
    return value


def retry_key(spec_name: str, phase: str) -> str:
    """Return the document key for a spec/phase pair."""

    return f"{spec_name}{KEY_DELIMITER}{phase}"


class RetryRecord(BaseModel):
    """Retry tracking for one spec and phase combination."""

    spec_name: str
    phase: str
    count: int = Field(default=0, ge=0)
    last_attempt: datetime | None = None
    max_retries: int = Field(default=3, ge=0)

    @field_validator("last_attempt", mode="before")
    @classmethod
    def _normalize_last_attempt(cls, value: Any) -> Any:
        return _zero_time_to_none(value)

    @property
    def key(self) -> str:
        return retry_key(self.spec_name, self.phase)

    def can_retry(self) -> bool:
        return self.count < self.max_retries

    def increment(self, now: datetime) -> None:
        """Consume one attempt, raising ``RetryExhaustedError`` at the ceiling."""

        if not self.can_retry():
            raise RetryExhaustedError(
                spec_name=self.spec_name,
                phase=self.phase,
                count=self.count,
                max_retries=self.max_retries,
            )
        self.count += 1
        self.last_attempt = now

    def reset(self) -> None:
        self.count = 0
        self.last_attempt = None


class StageProgress(BaseModel):
    """Progress through the phases of a phased implementation run."""

    spec_name: str
    current_phase: int = 0
    total_phases: int = 0
    completed_phases: list[int] = Field(default_factory=list)
    last_phase_attempt: datetime | None = None

    @field_validator("completed_phases", mode="before")
    @classmethod
    def _dedupe_phases(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, (list, tuple, set)):
            return list(dict.fromkeys(value))
        return value

    @field_validator("last_phase_attempt", mode="before")
    @classmethod
    def _normalize_timestamp(cls, value: Any) -> Any:
        return _zero_time_to_none(value)

    def is_phase_completed(self, phase_index: int) -> bool:
        return phase_index in self.completed_phases


class TaskProgress(BaseModel):
    """Progress through task-level execution for a spec."""

    spec_name: str
    current_task_id: str = ""
    completed_task_ids: list[str] = Field(default_factory=list)
    total_tasks: int = 0
    last_task_attempt: datetime | None = None

    @field_validator("completed_task_ids", mode="before")
    @classmethod
    def _dedupe_tasks(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, (list, tuple, set)):
            return list(dict.fromkeys(value))
        return value

    @field_validator("last_task_attempt", mode="before")
    @classmethod
    def _normalize_timestamp(cls, value: Any) -> Any:
        return _zero_time_to_none(value)

    def is_task_completed(self, task_id: str) -> bool:
        return task_id in self.completed_task_ids


class ExecutionStateDocument(BaseModel):
    """Root of the execution state file.

    The three families are independent maps that share one physical file.
    """

    retries: dict[str, RetryRecord] = Field(default_factory=dict)
    stage_states: dict[str, StageProgress] = Field(default_factory=dict)
    task_states: dict[str, TaskProgress] = Field(default_factory=dict)

    @field_validator("retries", "stage_states", "task_states", mode="before")
    @classmethod
    def _ensure_mapping(cls, value: Any) -> Any:
        if value is None:
            return {}
        return value

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> "ExecutionStateDocument":
        """Validate a decoded document, migrating legacy fields first."""

        return cls.model_validate(normalize_legacy_document(raw))

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def normalize_legacy_document(raw: dict[str, Any]) -> dict[str, Any]:
    """Fold the legacy ``phase_states`` field into ``stage_states``.

    Entries already present under ``stage_states`` win. The legacy field is
    dropped from the result so it is never written back. The input mapping is
    not modified.
    """

    if not isinstance(raw, dict):
        raise TypeError("Execution state document must be a JSON object")

    normalized = {key: value for key, value in raw.items() if key != LEGACY_STAGE_FIELD}
    legacy = raw.get(LEGACY_STAGE_FIELD) or {}
    if not legacy:
        return normalized
    if not isinstance(legacy, dict):
        raise TypeError(f"'{LEGACY_STAGE_FIELD}' must be a JSON object")

    merged = dict(normalized.get(STAGE_FIELD) or {})
    for spec_name, progress in legacy.items():
        merged.setdefault(spec_name, progress)
    normalized[STAGE_FIELD] = merged
    return normalized


__all__ = [
    "ExecutionStateDocument",
    "KEY_DELIMITER",
    "RetryRecord",
    "StageProgress",
    "TaskProgress",
    "normalize_legacy_document",
    "retry_key",
]
