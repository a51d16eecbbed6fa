"""
Exception types for helix-sync.

InvalidStateError rejects a mutation before it lands. VersionConflict and
RecordAlreadyExists are expected outcomes of optimistic writes. SyncFailure is
what the session manager sees once the engine gives up. AllTubesExhausted is a
signal rather than a failure.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from helix_sync.core.state import UserState


class HelixSyncError(Exception):
    """Base class for all helix-sync errors."""

    pass


class InvalidStateError(HelixSyncError):
    """Raised when a state (or a transition into it) violates an invariant."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class VersionConflict(HelixSyncError):
    """Raised by compare-and-set when the stored version is not the expected one."""

    def __init__(self, user_id: str, expected: int, actual: int | None):
        super().__init__(
            f"Version conflict for {user_id}: expected {expected}, found {actual}"
        )
        self.user_id = user_id
        self.expected = expected
        self.actual = actual


class RecordAlreadyExists(HelixSyncError):
    """Raised by insert when a record for the learner already exists."""

    def __init__(self, user_id: str):
        super().__init__(f"State record already exists: {user_id}")
        self.user_id = user_id


class RecordNotFoundError(HelixSyncError):
    """Raised where a missing record is an error rather than a normal outcome."""

    def __init__(self, user_id: str):
        super().__init__(f"State record not found: {user_id}")
        self.user_id = user_id


class TransportError(HelixSyncError):
    """Transient store failure (timeout, connection drop, 5xx). Safe to retry."""

    pass


class PermanentStoreError(HelixSyncError):
    """Non-retryable store failure (auth rejection, malformed payload, 4xx)."""

    pass


class SyncFailure(HelixSyncError):
    """Synchronization gave up. Local state is kept as-is."""

    def __init__(
        self,
        reason: str,
        retryable: bool = False,
        cause: BaseException | None = None,
    ):
        super().__init__(reason)
        self.reason = reason
        self.retryable = retryable
        self.cause = cause


class RemoteRecordMissing(SyncFailure):
    """The backend record vanished after a previous sync (administrative deletion)."""

    def __init__(self, user_id: str):
        super().__init__(
            f"Remote state for {user_id} was removed; refusing to recreate it",
            retryable=False,
        )
        self.user_id = user_id


class AllTubesExhausted(Exception):
    """
    Every tube has run out of queued content.

    Carries the state with the triggering bookkeeping applied (e.g. the
    completed grouping) so the caller can keep it while replenishing content.
    """

    def __init__(self, state: UserState):
        super().__init__(f"All tubes exhausted for {state.user_id}")
        self.state = state
