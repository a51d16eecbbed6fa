"""
Background sync worker.

Runs a sync callable in a daemon thread: periodically, and soon after
request_sync() is called (e.g. after a learning event). Callers never
wait on the network; the worker absorbs failures and reports them
through SyncStatus.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from loguru import logger

from helix_sync.core.errors import SyncFailure


@dataclass
class SyncStatus:
    """Current sync status."""

    is_running: bool = False
    is_syncing: bool = False
    has_unpushed_changes: bool = False
    last_sync_at: datetime | None = None
    last_sync_success: bool = True
    last_action: str | None = None
    error_message: str | None = None
    total_syncs: int = 0


@dataclass
class BackgroundSync:
    """
    Periodic + on-demand sync in a background thread.

    Usage:
        worker = BackgroundSync(sync_fn=manager.force_sync, interval_seconds=300)
        worker.start()
        worker.request_sync()   # after a learning event
        worker.stop()
    """

    sync_fn: Callable[[], Any]
    interval_seconds: float | None = 300.0  # None: only on request
    name: str = "helix-background-sync"

    # Internal state
    _thread: threading.Thread | None = field(default=None, repr=False)
    _stop_event: threading.Event = field(default_factory=threading.Event, repr=False)
    _wake_event: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the worker thread (no-op if already running)."""
        if self.is_running:
            logger.warning("Background sync already running")
            return

        self._stop_event.clear()
        self._wake_event.clear()
        self._thread = threading.Thread(target=self._sync_loop, name=self.name, daemon=True)
        self._thread.start()
        logger.info("Background sync started (interval: {}s)", self.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop gracefully; a sync in flight is allowed to finish."""
        if self._thread is None:
            return

        logger.info("Stopping background sync...")
        self._stop_event.set()
        self._wake_event.set()

        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)

        self._thread = None
        logger.info("Background sync stopped")

    def request_sync(self) -> None:
        """Ask the worker to sync as soon as possible."""
        self._wake_event.set()

    def _sync_loop(self) -> None:
        while not self._stop_event.is_set():
            # Wait for interval, a sync request or stop
            self._wake_event.wait(timeout=self.interval_seconds)
            self._wake_event.clear()
            if self._stop_event.is_set():
                break
            self._run_once()

    def _run_once(self) -> None:
        try:
            self.sync_fn()
        except SyncFailure as exc:
            # Local state stays authoritative; the next cycle retries
            logger.warning("Background sync failed: {}", exc)
        except Exception as exc:
            logger.error("Background sync error: {}", exc)
