"""
Record store contract.

The backend record of record is a key-value store keyed by learner id with
atomic compare-and-set on the state version. Adapters translate their own
failures into TransportError (retryable) or PermanentStoreError.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from helix_sync.core.state import UserState


@runtime_checkable
class RecordStore(Protocol):
    def get(self, user_id: str) -> UserState | None:
        """Current record, or None when the learner has no record."""
        ...

    def insert(self, state: UserState) -> None:
        """Create the record. Raises RecordAlreadyExists if one exists."""
        ...

    def compare_and_set(self, user_id: str, expected_version: int, new_state: UserState) -> None:
        """Replace the record only if it is still at expected_version.

        Raises:
            VersionConflict: If the stored version differs (or the record is gone)
        """
        ...

    def delete(self, user_id: str) -> None:
        """Administrative removal. Never called by the sync core."""
        ...
