"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from helix_sync.core.state import create_default  # noqa: E402
from helix_sync.store.memory import InMemoryRecordStore  # noqa: E402
from helix_sync.sync.engine import SyncEngine  # noqa: E402

T0 = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (multi-component flows)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def now():
    """Fixed reference time for deterministic schedules."""
    return T0


@pytest.fixture
def default_state():
    """Version-1 seed for learner u1 (20 units per tube)."""
    return create_default("u1")


@pytest.fixture
def memory_store():
    """Empty in-memory record store."""
    return InMemoryRecordStore()


@pytest.fixture
def sleeps():
    """Records backoff delays instead of sleeping."""
    return []


@pytest.fixture
def engine(memory_store, sleeps):
    """Sync engine over the in-memory store with a fixed clock and no real sleeping."""
    return SyncEngine(memory_store, max_attempts=3, backoff_seconds=0.5, sleep=sleeps.append, clock=lambda: T0)


@pytest.fixture
def log_messages():
    """Capture loguru output as a list of 'LEVEL message' strings."""
    from loguru import logger

    messages = []
    handler_id = logger.add(lambda msg: messages.append(f"{msg.record['level'].name} {msg.record['message']}"), level="DEBUG")
    yield messages
    logger.remove(handler_id)
