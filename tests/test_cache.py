import time

from femisse.cache import Cache, MemoryBackend, hash_params


class TestMemoryBackend:
    def test_entries_expire(self, monkeypatch):
        backend = MemoryBackend()
        now = time.monotonic()
        monkeypatch.setattr("femisse.cache.time.monotonic", lambda: now)
        backend.set("a", "1", ttl_seconds=10)
        assert backend.get("a") == "1"
        monkeypatch.setattr("femisse.cache.time.monotonic", lambda: now + 11)
        assert backend.get("a") is None

    def test_least_recently_used_entry_is_evicted(self):
        backend = MemoryBackend(max_entries=2)
        backend.set("a", "1", 60)
        backend.set("b", "2", 60)
        backend.get("a")
        backend.set("c", "3", 60)
        assert backend.get("a") == "1"
        assert backend.get("b") is None
        assert backend.get("c") == "3"


class TestCache:
    """Cache em memória quando não há REDIS_URL."""

    def test_values_round_trip_as_json(self):
        cache = Cache()
        cache.set("k", {"total_cents": 100, "items": ["x"]}, 60)
        assert cache.get("k") == {"total_cents": 100, "items": ["x"]}

    def test_invalidate_set_removes_every_member(self):
        cache = Cache()
        cache.set("list:1", [1], 60)
        cache.set("list:2", [2], 60)
        cache.add_to_set("lists", "list:1", 60)
        cache.add_to_set("lists", "list:2", 60)

        assert cache.invalidate_set("lists") == 2
        assert cache.get("list:1") is None
        assert cache.get("list:2") is None
        assert cache.set_members("lists") == set()

    def test_hash_params_ignores_key_order(self):
        assert hash_params({"a": 1, "b": None}) == hash_params({"b": None, "a": 1})
        assert hash_params({"a": 1}) != hash_params({"a": 2})
