"""Tests for the bounded dedupe window and event cache."""

from __future__ import annotations

import random

import pytest

from mint_sentinel.feed.dedupe import BoundedCache, DedupeWindow


class TestDedupeWindow:
    def test_add_reports_novelty(self) -> None:
        window = DedupeWindow(3)

        assert window.add("a") is True
        assert window.add("a") is False
        assert "a" in window

    def test_fifo_eviction(self) -> None:
        window = DedupeWindow(2)
        window.add("a")
        window.add("b")
        window.add("a")  # no refresh
        window.add("c")

        assert "a" not in window
        assert "b" in window
        assert "c" in window

    def test_size_never_exceeds_capacity(self) -> None:
        rng = random.Random(3)
        window = DedupeWindow(50)
        for _ in range(2_000):
            window.add(f"sig-{rng.randrange(300)}")
            assert len(window) <= 50

    def test_discard_and_clear(self) -> None:
        window = DedupeWindow(5)
        window.add("a")
        window.add("b")
        window.discard("a")
        assert window.add("a") is True

        window.clear()
        assert len(window) == 0

    def test_invalid_capacity(self) -> None:
        with pytest.raises(ValueError):
            DedupeWindow(0)


class TestBoundedCache:
    def test_put_get_and_evict(self) -> None:
        cache: BoundedCache[int] = BoundedCache(2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("c", 3)

        assert cache.get("a") is None
        assert cache.get("c") == 3
        assert cache.values() == [2, 3]

    def test_overwrite_keeps_position(self) -> None:
        cache: BoundedCache[int] = BoundedCache(2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("a", 10)
        cache.put("c", 3)

        assert "a" not in cache
        assert cache.values() == [2, 3]
