"""
Session Manager.

One instance per active learner session. Owns the in-memory state,
applies learning events to it one at a time, and drives the sync engine
in the background so the learner is never waiting on the network.

Flow:
    initialize(user_id)        -> offline cache or backend record, else a new seed
    apply_learning_event(e)    -> helix / scheduler transition, version bump,
                                  state-changed(local), background sync requested
    force_sync()               -> blocking fetch/reconcile/commit
    close()                    -> stop worker, persist cache, end the session

A sync result is only applied if the session that started the sync is
still the live one. Events applied while a sync is in flight are replayed
on top of whatever the backend ends up holding; if the synced helix rejects
one, local and synced state are merged so no applied progress is lost.
"""

from __future__ import annotations

import dataclasses
import threading
from datetime import datetime
from typing import Any, Callable

from loguru import logger

from helix_sync.core.content import ContentConfig
from helix_sync.core.errors import AllTubesExhausted, InvalidStateError, SyncFailure
from helix_sync.core.events import LearningEvent, apply_event, parse_learning_event
from helix_sync.core.helix import DEFAULT_GROUPING_SIZE
from helix_sync.core.scheduler import ReviewScheduler
from helix_sync.core.state import SyncSource, UserState, content_equal, create_default, utcnow, validate
from helix_sync.session.notifications import (
    ChangeSource,
    EventKind,
    NotificationRegistry,
    StateChange,
    SubscriptionHandle,
)
from helix_sync.store.local_cache import LocalStateCache
from helix_sync.sync.background import BackgroundSync, SyncStatus
from helix_sync.sync.engine import SyncEngine, SyncOutcome, has_local_progress
from helix_sync.sync.merge import merge_states


class SessionNotInitialized(RuntimeError):
    """Raised when the manager is used before initialize() or after close()."""

    pass


class SessionManager:
    """
    Orchestrates one learner session.

    Collaborators are injected; nothing here reaches for a global.

    Usage:
        manager = SessionManager(SyncEngine(store), cache=LocalStateCache())
        manager.initialize("u1")
        manager.apply_learning_event({"kind": "session_started", ...})
        manager.close()
    """

    def __init__(
        self,
        engine: SyncEngine,
        content: ContentConfig | None = None,
        cache: LocalStateCache | None = None,
        notifications: NotificationRegistry | None = None,
        scheduler: ReviewScheduler | None = None,
        grouping_size: int = DEFAULT_GROUPING_SIZE,
        background: bool = True,
        sync_interval_seconds: float | None = 300.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the manager.

        Args:
            engine: Sync engine wrapping the backend record store
            content: Seed content for new learners (built-in default if None)
            cache: Offline copy; without one, unsynced progress lives only in memory
            notifications: Observer registry (a private one if None)
            scheduler: Review scheduler (default configuration if None)
            grouping_size: Content units per grouping
            background: Run the background sync worker
            sync_interval_seconds: Periodic sync interval; None or 0 syncs only on request
            clock: Time source for sync status
        """
        self.engine = engine
        self.content = content
        self.cache = cache
        self.notifications = notifications or NotificationRegistry()
        self.scheduler = scheduler or ReviewScheduler()
        self.grouping_size = grouping_size
        self.background = background
        self.sync_interval_seconds = sync_interval_seconds
        self.clock = clock

        self._lock = threading.RLock()
        self._sync_lock = threading.Lock()
        self._state: UserState | None = None
        self._base: UserState | None = None
        self._session_token: object | None = None
        self._journal: list[LearningEvent] | None = None
        self._status = SyncStatus()
        self._worker: BackgroundSync | None = None

    # ========================================
    # Observers
    # ========================================

    def subscribe(self, kind: EventKind | str, callback: Callable[[Any], None]) -> SubscriptionHandle:
        return self.notifications.subscribe(kind, callback)

    def unsubscribe(self, handle: SubscriptionHandle) -> bool:
        return self.notifications.unsubscribe(handle)

    def _emit_state(self, source: ChangeSource) -> None:
        if self._state is None:
            return
        self.notifications.emit(
            EventKind.STATE_CHANGED,
            StateChange(state=self._state.copy_state(), source=source),
        )

    def _emit_status(self) -> None:
        self.notifications.emit(EventKind.SYNC_STATUS_CHANGED, dataclasses.replace(self._status))

    # ========================================
    # Accessors
    # ========================================

    @property
    def is_active(self) -> bool:
        return self._session_token is not None

    @property
    def sync_status(self) -> SyncStatus:
        with self._lock:
            return dataclasses.replace(self._status)

    def _require_state(self) -> UserState:
        if self._session_token is None or self._state is None:
            raise SessionNotInitialized("call initialize() first")
        return self._state

    def get_state(self) -> UserState:
        """Snapshot of the current state; changes to it never reach the session."""
        with self._lock:
            return self._require_state().copy_state()

    def due_items(self, now: datetime | None = None) -> list[str]:
        with self._lock:
            state = self._require_state()
            return self.scheduler.due_items(state, now or self.clock())

    # ========================================
    # Lifecycle
    # ========================================

    def initialize(self, user_id: str) -> UserState:
        """
        Load or create the learner's state and start the session.

        Order of preference: the offline cache (then a sync attempt), the
        backend record, and finally a fresh version-1 seed which is written
        to the backend. When the backend is unreachable the session still
        starts; the worker catches up later.

        Returns:
            Snapshot of the state the session starts from
        """
        if self._session_token is not None:
            self.close()

        token = object()
        cached = self.cache.load(user_id) if self.cache else None
        needs_sync = True

        if cached is not None:
            local, base, source = cached.state, cached.base, ChangeSource.LOCAL
            logger.debug("Loaded offline copy for {} at v{}", user_id, local.version)
        else:
            try:
                remote = self.engine.fetch_remote(user_id)
            except SyncFailure as exc:
                logger.warning("Backend unavailable for {} - starting offline: {}", user_id, exc)
                remote = None
                needs_sync = False

            if remote is not None:
                local, base, source = remote, remote.copy_state(), ChangeSource.REMOTE
                needs_sync = False
            else:
                local, base, source = create_default(user_id, self.content), None, ChangeSource.LOCAL

        with self._lock:
            self._state = local
            self._base = base
            self._session_token = token
            self._journal = None
            self._status = SyncStatus(has_unpushed_changes=base is None or has_local_progress(local, base))

        if needs_sync:
            try:
                self._sync(token)
            except SyncFailure as exc:
                logger.warning("Initial sync for {} failed; continuing offline: {}", user_id, exc)

        with self._lock:
            self._save_cache()
            self._emit_state(source)

        if self.background:
            self._worker = BackgroundSync(
                sync_fn=self._background_sync,
                interval_seconds=self.sync_interval_seconds or None,
            )
            self._worker.start()
            with self._lock:
                self._status.is_running = True

        logger.info("Session initialized for {} at v{}", user_id, self._state.version)
        return self.get_state()

    def close(self) -> None:
        """End the session. Sync results arriving afterwards are discarded."""
        worker, self._worker = self._worker, None
        if worker is not None:
            worker.stop()

        with self._lock:
            if self._session_token is None:
                return
            self._save_cache()
            self._session_token = None
            self._journal = None
            self._status.is_running = False
            user_id = self._state.user_id if self._state else None
        logger.info("Session closed for {}", user_id)

    def _save_cache(self) -> None:
        if self.cache is None or self._state is None:
            return
        try:
            self.cache.save(self._state, self._base)
        except OSError as exc:
            logger.warning("Could not write offline copy: {}", exc)

    # ========================================
    # Learning events
    # ========================================

    def _commit_local(
        self,
        current: UserState,
        candidate: UserState,
        source: SyncSource,
        timestamp: datetime,
    ) -> UserState:
        if candidate is current:
            return current
        candidate.version = current.version + 1
        candidate.updated_at = max(timestamp, current.updated_at) if current.updated_at else timestamp
        candidate.sync_source = source
        validate(candidate)
        return candidate

    def apply_learning_event(self, event: LearningEvent | dict[str, Any]) -> UserState:
        """
        Apply one learning event to the in-memory state.

        Never touches the network; a background sync is requested instead.

        Returns:
            Snapshot of the new state (unchanged for a no-op event)

        Raises:
            InvalidStateError: The event is malformed or would break an
                invariant; the state is left untouched
            AllTubesExhausted: Every tube is out of content; the event's
                bookkeeping is kept and the exception carries the new state
        """
        event = parse_learning_event(event)

        with self._lock:
            current = self._require_state()
            exhausted: AllTubesExhausted | None = None
            try:
                candidate, source = apply_event(current, event, self.scheduler, self.grouping_size)
            except AllTubesExhausted as exc:
                candidate, source, exhausted = exc.state, SyncSource.CLIENT, exc

            new_state = self._commit_local(current, candidate, source, event.timestamp)
            if new_state is not current:
                self._state = new_state
                if self._journal is not None:
                    self._journal.append(event)
                self._status.has_unpushed_changes = True
                self._save_cache()
                self._emit_state(ChangeSource.LOCAL)
                if self._worker is not None:
                    self._worker.request_sync()

            snapshot = new_state.copy_state()

        if exhausted is not None:
            exhausted.state = snapshot
            raise exhausted
        return snapshot

    def _rebase(self, synced: UserState, sent: UserState, journal: list[LearningEvent]) -> UserState:
        """
        Carry events applied during a sync onto the synced state.

        Events are replayed in order. If the synced helix no longer accepts
        one of them, the live local state is merged with the synced one
        instead, using what was sent as the common base, so additive
        progress from every journaled event is kept.
        """
        state = synced
        for event in journal:
            try:
                candidate, source = apply_event(state, event, self.scheduler, self.grouping_size)
            except AllTubesExhausted as exc:
                candidate, source = exc.state, SyncSource.CLIENT
            except InvalidStateError as exc:
                logger.warning(
                    "{} event from {} no longer applies after sync ({}); merging local progress",
                    event.kind,
                    event.timestamp.isoformat(),
                    exc,
                )
                return self._merge_local(synced, sent)
            state = self._commit_local(state, candidate, source, event.timestamp)
        return state

    def _merge_local(self, synced: UserState, sent: UserState) -> UserState:
        local = self._state
        merged = merge_states(local, synced, sent)
        if content_equal(merged, synced):
            return synced
        merged.version = max(local.version, synced.version + 1)
        merged.sync_source = local.sync_source
        validate(merged)
        return merged

    # ========================================
    # Synchronization
    # ========================================

    def force_sync(self) -> SyncOutcome:
        """
        Synchronize now, waiting for any sync already in flight first.

        Raises:
            SyncFailure: The backend could not be brought in line; the local
                state is kept
        """
        with self._lock:
            self._require_state()
            token = self._session_token
        return self._sync(token)

    def _background_sync(self) -> None:
        token = self._session_token
        if token is None:
            return
        self._sync(token)

    def _sync(self, token: object) -> SyncOutcome:
        with self._sync_lock:
            with self._lock:
                if token is not self._session_token or self._state is None:
                    raise SyncFailure("session closed before sync started")
                snapshot = self._state.copy_state()
                base = self._base
                self._journal = []
                self._status.is_syncing = True
                self._emit_status()

            try:
                outcome = self.engine.synchronize(snapshot, base)
            except SyncFailure as exc:
                with self._lock:
                    self._journal = None
                    if token is self._session_token:
                        self._status.is_syncing = False
                        self._status.last_sync_success = False
                        self._status.error_message = str(exc)
                        self._emit_status()
                raise

            with self._lock:
                journal, self._journal = self._journal or [], None
                if token is not self._session_token:
                    logger.debug("Session ended during sync - discarding result")
                    return outcome

                previous = self._state
                self._base = outcome.state.copy_state()
                self._state = self._rebase(outcome.state, snapshot, journal)

                self._status.is_syncing = False
                self._status.last_sync_success = True
                self._status.last_sync_at = self.clock()
                self._status.last_action = outcome.action.value
                self._status.error_message = None
                self._status.total_syncs += 1
                self._status.has_unpushed_changes = has_local_progress(self._state, self._base)
                self._save_cache()

                if not content_equal(previous, self._state):
                    self._emit_state(ChangeSource.REMOTE)
                self._emit_status()

            return outcome
