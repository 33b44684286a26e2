"""Errors raised by the execution state store."""

from __future__ import annotations

EXIT_RETRY_EXHAUSTED = 2


class StateStoreError(RuntimeError):
    """Base class for execution state errors."""


class StatePersistenceError(StateStoreError):
    """Raised when the state document cannot be written to disk."""


class RetryExhaustedError(StateStoreError):
    """Raised when a spec/phase has used up its configured attempts."""

    exit_code = EXIT_RETRY_EXHAUSTED

    def __init__(self, *, spec_name: str, phase: str, count: int, max_retries: int) -> None:
        self.spec_name = spec_name
        self.phase = phase
        self.count = count
        self.max_retries = max_retries
        super().__init__(
            f"retry limit exhausted for {spec_name}:{phase} ({count}/{max_retries} attempts)"
        )


__all__ = [
    "EXIT_RETRY_EXHAUSTED",
    "RetryExhaustedError",
    "StatePersistenceError",
    "StateStoreError",
]
