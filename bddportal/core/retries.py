"""Bookkeeping of retried scenario executions."""

from __future__ import annotations

import threading


def unique_id(uri: str, line: int) -> str:
    """Identify a test case across attempts."""
    return f"{uri}:{line}"


class RetryRegistry:
    """Thread-safe map of test-case unique IDs to a retry flag.

    A runner or retry plugin marks test cases it re-executes; the reporter
    also counts attempts itself, so a second start of the same unique ID is
    a retry even when nothing marked it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._retries: dict[str, bool] = {}
        self._attempts: dict[str, int] = {}

    def mark(self, unique_id: str, retried: bool = True) -> None:
        with self._lock:
            self._retries[unique_id] = retried

    def is_retry(self, unique_id: str) -> bool:
        with self._lock:
            return self._retries.get(unique_id, False)

    def record_attempt(self, unique_id: str) -> bool:
        """Count an execution and report whether it is a retry.

        Returns
        -------
        bool
            True for the second and later attempts, or when marked as retried
        """
        with self._lock:
            attempts = self._attempts.get(unique_id, 0) + 1
            self._attempts[unique_id] = attempts
            return attempts > 1 or self._retries.get(unique_id, False)

    def clear(self) -> None:
        with self._lock:
            self._retries.clear()
            self._attempts.clear()
