"""
State Synchronization Engine.

Reconciles the local learner state with the backend record and writes the
result back with optimistic concurrency. At most one version is ever
current on the backend, and local progress is never dropped without a
merge.

Reconcile decision table (local L, remote R, base B = last agreed state):

    R missing, no B            -> CREATE   insert L at its current version
    R missing, B known         -> RemoteRecordMissing (never recreated silently)
    L has no unpushed progress,
      R.version >= L.version   -> ADOPT_REMOTE (NOOP when content is equal)
    R.version == L.version,
      content equal            -> NOOP
    otherwise                  -> COMMIT   L (fast-forward when R is still B)
                                           or merge(L, R, B), written at
                                           max(L.version, R.version + 1) with
                                           compare-and-set on R.version

Failure handling:
- TransportError: retried up to max_attempts with exponential backoff
- PermanentStoreError / invalid merged state: SyncFailure, not retried
- VersionConflict: re-fetch, re-reconcile, retry once; a second conflict
  is a SyncFailure
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from loguru import logger

from helix_sync.core.errors import (
    InvalidStateError,
    PermanentStoreError,
    RecordAlreadyExists,
    RemoteRecordMissing,
    SyncFailure,
    TransportError,
    VersionConflict,
)
from helix_sync.core.state import SyncSource, UserState, content_equal, utcnow, validate
from helix_sync.store.base import RecordStore
from helix_sync.sync.merge import merge_states


class SyncAction(str, Enum):
    NOOP = "noop"
    ADOPT_REMOTE = "adopt_remote"
    CREATE = "create"
    COMMIT = "commit"


@dataclass
class SyncPlan:
    """What reconcile decided, and the inputs it decided from."""

    action: SyncAction
    state: UserState
    local: UserState
    base: UserState | None
    expected_version: int | None = None


@dataclass
class SyncOutcome:
    """Result of a completed synchronization."""

    action: SyncAction
    state: UserState  # now shared with the backend
    conflicts: int = 0


def has_local_progress(local: UserState, base: UserState | None) -> bool:
    """Whether local holds changes the backend has not seen."""
    if base is None:
        # A pristine seed has never had an event applied
        return local.updated_at is not None or local.version > 1
    return local.version != base.version


class SyncEngine:
    """
    Synchronizes one learner's state with a RecordStore.

    Usage:
        engine = SyncEngine(store)
        outcome = engine.synchronize(local_state, base_state)
    """

    def __init__(
        self,
        store: RecordStore,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the engine.

        Args:
            store: Backend record store
            max_attempts: Attempts per store call on transient failures
            backoff_seconds: Base delay; attempt n waits backoff * 2**n
            sleep: Sleep function (injectable for tests)
            clock: Source of last_sync_time stamps
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep
        self.clock = clock

    # ========================================
    # Store access with bounded retry
    # ========================================

    def _call(self, description: str, fn: Callable[..., Any], *args: Any) -> Any:
        last_error: TransportError | None = None

        for attempt in range(self.max_attempts):
            try:
                return fn(*args)
            except TransportError as exc:
                last_error = exc
                if attempt < self.max_attempts - 1:
                    wait_time = self.backoff_seconds * (2 ** attempt)
                    logger.warning(
                        f"{description} failed on attempt {attempt + 1}/{self.max_attempts}: "
                        f"{exc}. Retrying in {wait_time}s..."
                    )
                    self.sleep(wait_time)
            except PermanentStoreError as exc:
                logger.error(f"{description} rejected by store: {exc}")
                raise SyncFailure(f"{description} rejected: {exc}", retryable=False, cause=exc) from exc

        logger.error(f"{description} failed after {self.max_attempts} attempts: {last_error}")
        raise SyncFailure(
            f"{description} failed after {self.max_attempts} attempts",
            retryable=True,
            cause=last_error,
        ) from last_error

    def fetch_remote(self, user_id: str) -> UserState | None:
        """
        Fetch the backend record.

        Returns:
            The remote state, or None when the learner has no record

        Raises:
            SyncFailure: If the store stays unreachable or rejects the request
        """
        return self._call(f"Fetch state for {user_id}", self.store.get, user_id)

    # ========================================
    # Reconcile
    # ========================================

    def reconcile(
        self,
        local: UserState,
        remote: UserState | None,
        base: UserState | None = None,
    ) -> SyncPlan:
        """
        Decide how local and remote converge (pure; no I/O).

        Args:
            local: This device's state
            remote: Backend record, or None when absent
            base: Last state agreed with the backend, or None if never synced

        Returns:
            SyncPlan describing the write (if any) to perform

        Raises:
            RemoteRecordMissing: The record vanished after an earlier sync
            InvalidStateError: The states cannot be combined into a valid one
        """
        if remote is None:
            if base is not None:
                raise RemoteRecordMissing(local.user_id)
            return SyncPlan(SyncAction.CREATE, local.copy_state(), local, base)

        if remote.user_id != local.user_id:
            raise InvalidStateError(
                f"remote record belongs to {remote.user_id}, not {local.user_id}"
            )

        dirty = has_local_progress(local, base)

        if not dirty and remote.version >= local.version:
            if remote.version == local.version and content_equal(local, remote):
                return SyncPlan(SyncAction.NOOP, remote.copy_state(), local, base)
            return SyncPlan(SyncAction.ADOPT_REMOTE, remote.copy_state(), local, base)

        if remote.version == local.version and content_equal(local, remote):
            return SyncPlan(SyncAction.NOOP, remote.copy_state(), local, base)

        remote_unchanged = base is not None and remote.version == base.version
        if remote_unchanged:
            candidate = local.copy_state()
        else:
            candidate = merge_states(local, remote, base)
            candidate.sync_source = SyncSource.SYNC_MERGE
        candidate.version = max(local.version, remote.version + 1)
        validate(candidate)

        return SyncPlan(
            SyncAction.COMMIT,
            candidate,
            local,
            base,
            expected_version=remote.version,
        )

    # ========================================
    # Commit
    # ========================================

    def _write(self, plan: SyncPlan) -> UserState:
        written = plan.state.copy_state()
        written.last_sync_time = self.clock()
        user_id = written.user_id

        if plan.action is SyncAction.CREATE:
            self._call(f"Create state for {user_id}", self.store.insert, written)
        elif plan.action is SyncAction.COMMIT:
            self._call(
                f"Commit state for {user_id}",
                self.store.compare_and_set,
                user_id,
                plan.expected_version,
                written,
            )
        return written

    def commit(self, plan: SyncPlan) -> SyncOutcome:
        """
        Carry out a plan, retrying once on a version conflict.

        Raises:
            SyncFailure: Second conflict, exhausted transport retries, or a
                non-retryable store error
        """
        conflicts = 0
        while True:
            try:
                state = self._write(plan)
            except (VersionConflict, RecordAlreadyExists) as exc:
                conflicts += 1
                if conflicts > 1:
                    logger.error("Conflict persisted for {} after retry: {}", plan.local.user_id, exc)
                    raise SyncFailure(
                        f"Concurrent writes kept conflicting for {plan.local.user_id}",
                        retryable=True,
                        cause=exc,
                    ) from exc

                logger.info("{} - re-fetching and reconciling", exc)
                remote = self.fetch_remote(plan.local.user_id)
                try:
                    plan = self.reconcile(plan.local, remote, plan.base)
                except InvalidStateError as invalid:
                    raise SyncFailure(str(invalid), retryable=False, cause=invalid) from invalid
                continue

            logger.info(
                "Sync {} for {} -> v{}",
                plan.action.value,
                state.user_id,
                state.version,
            )
            return SyncOutcome(action=plan.action, state=state, conflicts=conflicts)

    def synchronize(self, local: UserState, base: UserState | None = None) -> SyncOutcome:
        """
        Full cycle: fetch, reconcile, commit.

        Args:
            local: This device's state
            base: Last state agreed with the backend

        Returns:
            SyncOutcome with the state now shared with the backend

        Raises:
            SyncFailure: Whenever the backend could not be brought in line
        """
        remote = self.fetch_remote(local.user_id)
        try:
            plan = self.reconcile(local, remote, base)
        except InvalidStateError as exc:
            raise SyncFailure(str(exc), retryable=False, cause=exc) from exc
        return self.commit(plan)
