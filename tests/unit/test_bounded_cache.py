"""Tests for bounded cache and the caches built on it."""

from semantic_pipeline.infrastructure.cache import BoundedCache, LLMResponseCache, QueryResultCache, cache_get, cache_set


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# BoundedCache
# ---------------------------------------------------------------------------


class TestBoundedCache:
    def test_set_and_get(self):
        cache: BoundedCache[str] = BoundedCache(max_size=10, ttl_seconds=60)
        cache.set("a", "1")
        assert cache.get("a") == "1"
        assert cache.get("missing") is None

    def test_expired_entry_is_a_miss(self):
        clock = FakeClock()
        cache: BoundedCache[str] = BoundedCache(max_size=10, ttl_seconds=60, clock=clock)
        cache.set("a", "1")
        clock.advance(61)
        assert cache.get("a") is None

    def test_stale_read_within_stale_window(self):
        clock = FakeClock()
        cache: BoundedCache[str] = BoundedCache(max_size=10, ttl_seconds=60, stale_ttl_seconds=600, clock=clock)
        cache.set("a", "1")
        clock.advance(120)
        assert cache.get("a") is None
        assert cache.get_stale("a") == "1"
        clock.advance(600)
        assert cache.get_stale("a") is None

    def test_evicts_oldest_when_full(self):
        clock = FakeClock()
        cache: BoundedCache[int] = BoundedCache(max_size=2, ttl_seconds=60, clock=clock)
        cache.set("a", 1)
        clock.advance(1)
        cache.set("b", 2)
        clock.advance(1)
        cache.set("c", 3)
        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_eviction_follows_write_age_not_reads(self):
        clock = FakeClock()
        cache: BoundedCache[int] = BoundedCache(max_size=2, ttl_seconds=60, clock=clock)
        cache.set("a", 1)
        clock.advance(1)
        cache.set("b", 2)
        clock.advance(1)
        assert cache.get("a") == 1
        cache.set("c", 3)
        assert cache.get("a") is None
        assert cache.get("b") == 2

    def test_rewrite_refreshes_write_age(self):
        clock = FakeClock()
        cache: BoundedCache[int] = BoundedCache(max_size=2, ttl_seconds=60, clock=clock)
        cache.set("a", 1)
        clock.advance(1)
        cache.set("b", 2)
        clock.advance(1)
        cache.set("a", 10)
        clock.advance(1)
        cache.set("c", 3)
        assert cache.get("a") == 10
        assert cache.get("b") is None

    def test_get_or_set_calls_factory_once(self):
        cache: BoundedCache[int] = BoundedCache(max_size=10, ttl_seconds=60)
        calls = []

        def factory() -> int:
            calls.append(1)
            return 42

        assert cache.get_or_set("k", factory) == 42
        assert cache.get_or_set("k", factory) == 42
        assert len(calls) == 1

    def test_delete_and_clear(self):
        cache: BoundedCache[int] = BoundedCache(max_size=10, ttl_seconds=60)
        cache.set("a", 1)
        assert cache.delete("a")
        assert not cache.delete("a")
        cache.set("b", 2)
        cache.clear()
        assert cache.get_stats()["size"] == 0

    def test_stats(self):
        cache: BoundedCache[int] = BoundedCache(max_size=10, ttl_seconds=60)
        cache.set("a", 1)
        cache.get("a")
        cache.get("b")
        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 50.0


# ---------------------------------------------------------------------------
# LLMResponseCache / QueryResultCache
# ---------------------------------------------------------------------------


class TestLLMResponseCache:
    def test_key_normalizes_message(self):
        a = LLMResponseCache.make_key("t1", "prompt", "Net  Sales  Yesterday")
        b = LLMResponseCache.make_key("t1", "prompt", "net sales yesterday")
        assert a == b

    def test_key_is_tenant_scoped(self):
        assert LLMResponseCache.make_key("t1", "p", "q") != LLMResponseCache.make_key("t2", "p", "q")

    def test_key_ignores_assistant_history(self):
        history_a = [{"role": "user", "content": "sales?"}, {"role": "assistant", "content": "A"}]
        history_b = [{"role": "user", "content": "sales?"}, {"role": "assistant", "content": "B"}]
        assert LLMResponseCache.make_key("t", "p", "q", history_a) == LLMResponseCache.make_key(
            "t", "p", "q", history_b
        )

    def test_from_settings(self, settings):
        cache = LLMResponseCache.from_settings(settings)
        cache.set("k", "v")
        assert cache.get("k") == "v"
        assert cache.get_stats()["max_size"] == settings.llm_cache_max_size


class TestQueryResultCache:
    def test_params_are_part_of_the_key(self):
        cache = QueryResultCache()
        cache.set("t1", "SELECT 1", ["a"], "first")
        assert cache.get("t1", "SELECT 1", ["a"]) == "first"
        assert cache.get("t1", "SELECT 1", ["b"]) is None

    def test_whitespace_is_normalized(self):
        assert QueryResultCache.fingerprint("t", "SELECT  1\nFROM x", []) == QueryResultCache.fingerprint(
            "t", "SELECT 1 FROM x", []
        )


# ---------------------------------------------------------------------------
# Best-effort access
# ---------------------------------------------------------------------------


def _down():
    raise ConnectionError("cache backend down")


def test_failing_read_is_a_miss(caplog):
    assert cache_get(_down, "Query") is None
    assert "Query cache read failed" in caplog.text


def test_failing_write_is_dropped(caplog):
    cache_set(_down, "Narrative")
    assert "Narrative cache write failed" in caplog.text


def test_healthy_cache_passes_through():
    cache = QueryResultCache()
    cache_set(lambda: cache.set("t1", "SELECT 1", [], "rows"), "Query")
    assert cache_get(lambda: cache.get("t1", "SELECT 1", []), "Query") == "rows"
