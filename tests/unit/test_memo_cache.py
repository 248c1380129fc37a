"""
Tests for the classifier memo cache.

Validates:
1. Keys are a pure function of (mode, content, params)
2. LRU eviction keeps size <= max_entries
3. TTL expiry turns a lookup into a miss
4. Re-setting a key refreshes its expiry and recency
"""

from __future__ import annotations

from decluttr.observability.telemetry import get_counter
from decluttr.storage.cache import (
    MemoCache,
    cache_key,
    categorize_key,
    fingerprint,
    match_label_key,
    summarize_key,
)


class TestCacheKeys:
    def test_same_inputs_same_key(self):
        assert summarize_key("hello") == summarize_key("hello")

    def test_mode_is_part_of_key(self):
        assert summarize_key("hello") != categorize_key("hello")
        assert summarize_key("hello").startswith("summarize:")

    def test_params_order_does_not_matter(self):
        a = fingerprint("matchLabel", "body", {"labelName": "x", "labelDescription": "y"})
        b = fingerprint("matchLabel", "body", {"labelDescription": "y", "labelName": "x"})
        assert a == b
        assert a == match_label_key("body", "x", "y")

    def test_params_change_key(self):
        assert match_label_key("body", "x", "y") != match_label_key("body", "x", "z")

    def test_empty_params_same_as_none(self):
        assert fingerprint("summarize", "body", {}) == fingerprint("summarize", "body")

    def test_parts_are_separated(self):
        """("ab", "c") and ("a", "bc") must not collide."""
        assert cache_key("p", "ab", "c") != cache_key("p", "a", "bc")


class TestMemoCache:
    def test_set_then_get(self, clock):
        cache = MemoCache(timer=clock)
        cache.set("k", "v")
        assert cache.get("k") == "v"
        assert get_counter("cache.classification.hit") == 1

    def test_miss_returns_none(self, clock):
        cache = MemoCache(timer=clock)
        assert cache.get("missing") is None
        assert get_counter("cache.classification.miss") == 1

    def test_expired_entry_is_a_miss(self, clock):
        cache = MemoCache(ttl_seconds=3600, timer=clock)
        cache.set("k", "v")

        clock.advance(3599)
        assert cache.get("k") == "v"

        clock.advance(1)
        assert cache.get("k") is None
        assert "k" not in cache
        assert get_counter("cache.classification.expired") == 1

    def test_size_never_exceeds_max_entries(self, clock):
        cache = MemoCache(max_entries=3, timer=clock)
        for i in range(10):
            cache.set(f"k{i}", i)
            assert len(cache) <= 3
        assert cache.get("k9") == 9
        assert cache.get("k0") is None

    def test_lookup_promotes_to_most_recent(self, clock):
        cache = MemoCache(max_entries=2, timer=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)

        assert cache.get("a") == 1
        assert cache.get("b") is None
        assert cache.get("c") == 3

    def test_update_refreshes_expiry(self, clock):
        cache = MemoCache(ttl_seconds=100, timer=clock)
        cache.set("k", "old")
        clock.advance(90)
        cache.set("k", "new")
        clock.advance(50)

        assert cache.get("k") == "new"

    def test_expired_entries_pruned_before_insert(self, clock):
        cache = MemoCache(max_entries=2, ttl_seconds=10, timer=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        clock.advance(10)
        cache.set("c", 3)

        assert len(cache) == 1
        assert cache.stats()["entries"] == 1

    def test_invalidate_and_clear(self, clock):
        cache = MemoCache(timer=clock)
        cache.set("a", 1)
        cache.set("b", 2)

        cache.invalidate("a")
        cache.invalidate("not-there")
        assert cache.get("a") is None
        assert len(cache) == 1

        cache.clear()
        assert len(cache) == 0

    def test_counters_use_cache_name(self, clock):
        cache = MemoCache(name="labels", timer=clock)
        cache.set("k", 1)
        cache.get("k")
        assert get_counter("cache.labels.write") == 1
        assert get_counter("cache.labels.hit") == 1
