"""
Tests for environment-driven settings and store wiring.
"""

import pytest
from pydantic import ValidationError

from helix_sync.config import Settings, get_settings
from helix_sync.store import InMemoryRecordStore, build_record_store
from helix_sync.store.http import HttpRecordStore
from helix_sync.store.sql import SqlRecordStore


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ("STORE_BACKEND", "DATABASE_URL", "API_BASE_URL", "API_TOKEN", "SYNC_MAX_ATTEMPTS"):
        monkeypatch.delenv(f"HELIX_{name}", raising=False)
    # keep a developer's .env out of the picture
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.store_backend == "sql"
        assert settings.database_url.startswith("sqlite:///")
        assert settings.sync_max_attempts == 3
        assert settings.base_interval_days == 1.0
        assert settings.units_per_tube == 20

    def test_reads_prefixed_environment(self, monkeypatch):
        monkeypatch.setenv("HELIX_STORE_BACKEND", "http")
        monkeypatch.setenv("HELIX_API_TOKEN", "t0k3n")
        monkeypatch.setenv("HELIX_SYNC_MAX_ATTEMPTS", "5")

        settings = get_settings()

        assert settings.store_backend == "http"
        assert settings.api_token == "t0k3n"
        assert settings.sync_max_attempts == 5

    def test_cached(self):
        assert get_settings() is get_settings()

    def test_rejects_unknown_backend(self, monkeypatch):
        monkeypatch.setenv("HELIX_STORE_BACKEND", "redis")
        with pytest.raises(ValidationError):
            Settings()

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValidationError):
            Settings(sync_max_attempts=0)


class TestBuildRecordStore:
    def test_memory(self):
        assert isinstance(build_record_store(Settings(store_backend="memory")), InMemoryRecordStore)

    def test_sql_creates_database_directory(self, tmp_path):
        db_path = tmp_path / "data" / "state.db"
        store = build_record_store(Settings(store_backend="sql", database_url=f"sqlite:///{db_path}"))
        try:
            assert isinstance(store, SqlRecordStore)
            assert db_path.parent.is_dir()
        finally:
            store.close()

    def test_http(self):
        store = build_record_store(Settings(store_backend="http", api_base_url="https://api.test"))
        try:
            assert isinstance(store, HttpRecordStore)
        finally:
            store.close()
