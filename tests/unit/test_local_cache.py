"""
Tests for the offline state cache.
"""

from helix_sync.core.state import create_default
from helix_sync.store.local_cache import LocalStateCache


class TestLocalStateCache:
    def test_missing(self, tmp_path):
        assert LocalStateCache(tmp_path).load("u1") is None

    def test_save_and_load(self, tmp_path, default_state):
        cache = LocalStateCache(tmp_path)
        local = default_state.copy_state()
        local.version = 2
        local.progress_metrics.total_sessions = 1

        path = cache.save(local, default_state)
        cached = cache.load("u1")

        assert path == tmp_path / "u1.json"
        assert cached.state.model_dump() == local.model_dump()
        assert cached.base.model_dump() == default_state.model_dump()

    def test_never_synced_has_no_base(self, tmp_path, default_state):
        cache = LocalStateCache(tmp_path)
        cache.save(default_state, None)
        assert cache.load("u1").base is None

    def test_no_temp_file_left(self, tmp_path, default_state):
        LocalStateCache(tmp_path).save(default_state, None)
        assert [p.name for p in tmp_path.iterdir()] == ["u1.json"]

    def test_corrupt_file_ignored(self, tmp_path, log_messages):
        (tmp_path / "u1.json").write_text("{not json", encoding="utf-8")

        assert LocalStateCache(tmp_path).load("u1") is None
        assert any(m.startswith("WARNING") for m in log_messages)

    def test_incomplete_payload_ignored(self, tmp_path):
        (tmp_path / "u1.json").write_text('{"base": null}', encoding="utf-8")
        assert LocalStateCache(tmp_path).load("u1") is None

    def test_creates_directory(self, tmp_path):
        LocalStateCache(tmp_path / "nested" / "cache")
        assert (tmp_path / "nested" / "cache").is_dir()

    def test_delete(self, tmp_path, default_state):
        cache = LocalStateCache(tmp_path)
        cache.save(default_state, None)
        assert cache.delete("u1")
        assert not cache.delete("u1")
        assert cache.load("u1") is None

    def test_user_id_cannot_escape_cache_dir(self, tmp_path):
        cache_dir = tmp_path / "cache"
        cache = LocalStateCache(cache_dir)

        path = cache.save(create_default("../x"), None)

        assert path.parent == cache_dir
        assert [p.name for p in cache_dir.iterdir()] == ["..%2Fx.json"]
        assert not (tmp_path / "x.json").exists()
        assert cache.load("../x").state.user_id == "../x"
        assert cache.load("x") is None
