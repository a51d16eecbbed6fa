"""In-process record store with atomic compare-and-set."""

from __future__ import annotations

import threading

from loguru import logger

from helix_sync.core.errors import PermanentStoreError, RecordAlreadyExists, VersionConflict
from helix_sync.core.state import UserState


class InMemoryRecordStore:
    """
    Thread-safe dict-backed store.

    Records are deep-copied in and out so callers can never alias the
    stored state.
    """

    def __init__(self) -> None:
        self._records: dict[str, UserState] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> UserState | None:
        with self._lock:
            record = self._records.get(user_id)
            return record.copy_state() if record else None

    def insert(self, state: UserState) -> None:
        with self._lock:
            if state.user_id in self._records:
                raise RecordAlreadyExists(state.user_id)
            self._records[state.user_id] = state.copy_state()
        logger.debug("Inserted state for {} at v{}", state.user_id, state.version)

    def compare_and_set(self, user_id: str, expected_version: int, new_state: UserState) -> None:
        if new_state.version <= expected_version:
            raise PermanentStoreError(
                f"new version {new_state.version} must exceed expected {expected_version}"
            )
        with self._lock:
            current = self._records.get(user_id)
            actual = current.version if current else None
            if actual != expected_version:
                raise VersionConflict(user_id, expected_version, actual)
            self._records[user_id] = new_state.copy_state()
        logger.debug("Committed {} v{} -> v{}", user_id, expected_version, new_state.version)

    def delete(self, user_id: str) -> None:
        with self._lock:
            self._records.pop(user_id, None)

    def __len__(self) -> int:
        return len(self._records)
