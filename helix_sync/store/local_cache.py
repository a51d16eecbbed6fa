"""
Offline copy of learner state.

Keeps the local state and its sync base on disk so progress made while
offline survives a restart. Stored as JSON files in ~/.helix/cache/
named after the URL-quoted learner id, so an id can never point outside
the cache directory.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

from loguru import logger
from pydantic import ValidationError

from helix_sync.core.state import UserState

CACHE_DIR = Path.home() / ".helix" / "cache"


@dataclass
class CachedState:
    """Local state plus the last state agreed with the backend (None if never synced)."""

    state: UserState
    base: UserState | None = None

    def to_dict(self) -> dict:
        return {
            "state": self.state.to_wire(),
            "base": self.base.to_wire() if self.base else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> CachedState:
        base = data.get("base")
        return cls(
            state=UserState.from_wire(data["state"]),
            base=UserState.from_wire(base) if base else None,
        )


class LocalStateCache:
    """
    Per-learner JSON files.

    Writes go to a temporary file first and are moved into place, so a
    crash mid-write never leaves a truncated cache behind.
    """

    def __init__(self, cache_dir: Path | None = None):
        self.cache_dir = Path(cache_dir or CACHE_DIR)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, user_id: str) -> Path:
        return self.cache_dir / f"{quote(user_id, safe='')}.json"

    def save(self, state: UserState, base: UserState | None) -> Path:
        """Save the local state and its base."""
        filepath = self._path(state.user_id)
        tmp_path = filepath.with_suffix(".json.tmp")

        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(CachedState(state=state, base=base).to_dict(), f, indent=2)
        os.replace(tmp_path, filepath)

        return filepath

    def load(self, user_id: str) -> CachedState | None:
        """Load a learner's offline copy, or None if absent or unreadable."""
        filepath = self._path(user_id)
        if not filepath.exists():
            return None

        try:
            with open(filepath, "r", encoding="utf-8") as f:
                data = json.load(f)
            return CachedState.from_dict(data)
        except (json.JSONDecodeError, KeyError, TypeError, ValidationError) as exc:
            logger.warning("Ignoring unreadable cache for {}: {}", user_id, exc)
            return None

    def delete(self, user_id: str) -> bool:
        """Delete a learner's cache file."""
        filepath = self._path(user_id)
        if filepath.exists():
            filepath.unlink()
            return True
        return False
