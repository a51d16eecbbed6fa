"""
Observer registry for session notifications.

Consumers subscribe per event kind and get an opaque handle back; the
handle is the only thing needed to unsubscribe. Callbacks run
synchronously and in subscription order. A failing callback is logged
and does not stop the others.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from loguru import logger

from helix_sync.core.state import UserState


class EventKind(str, Enum):
    STATE_CHANGED = "state-changed"
    SYNC_STATUS_CHANGED = "sync-status-changed"


class ChangeSource(str, Enum):
    LOCAL = "local"  # a learning event applied on this device
    REMOTE = "remote"  # adopted or merged from the backend


@dataclass(frozen=True)
class StateChange:
    """Payload of a state-changed notification."""

    state: UserState
    source: ChangeSource


@dataclass(frozen=True)
class SubscriptionHandle:
    kind: EventKind
    token: int


class NotificationRegistry:
    def __init__(self) -> None:
        self._subscribers: dict[SubscriptionHandle, Callable[[Any], None]] = {}
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def subscribe(self, kind: EventKind | str, callback: Callable[[Any], None]) -> SubscriptionHandle:
        """Register a callback for one event kind."""
        handle = SubscriptionHandle(kind=EventKind(kind), token=next(self._counter))
        with self._lock:
            self._subscribers[handle] = callback
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> bool:
        """Remove a subscription. Returns False if the handle was unknown."""
        with self._lock:
            return self._subscribers.pop(handle, None) is not None

    def subscriber_count(self, kind: EventKind | str | None = None) -> int:
        with self._lock:
            if kind is None:
                return len(self._subscribers)
            kind = EventKind(kind)
            return sum(1 for handle in self._subscribers if handle.kind is kind)

    def emit(self, kind: EventKind, payload: Any) -> None:
        """Deliver `payload` to every subscriber of `kind`."""
        with self._lock:
            callbacks = [cb for handle, cb in self._subscribers.items() if handle.kind is kind]

        for callback in callbacks:
            try:
                callback(payload)
            except Exception as exc:
                logger.warning("{} subscriber failed: {}", kind.value, exc)

    def clear(self) -> None:
        with self._lock:
            self._subscribers.clear()
