"""Persistent retry, stage and task progress tracking."""

from .errors import EXIT_RETRY_EXHAUSTED, RetryExhaustedError, StatePersistenceError, StateStoreError
from .models import (
    ExecutionStateDocument,
    RetryRecord,
    StageProgress,
    TaskProgress,
    normalize_legacy_document,
    retry_key,
)
from .store import STATE_FILE_NAME, ExecutionStateStore

__all__ = [
    "EXIT_RETRY_EXHAUSTED",
    "ExecutionStateDocument",
    "ExecutionStateStore",
    "RetryExhaustedError",
    "RetryRecord",
    "STATE_FILE_NAME",
    "StatePersistenceError",
    "StateStoreError",
    "StageProgress",
    "TaskProgress",
    "normalize_legacy_document",
    "retry_key",
]
