"""Tests for the callback token registry."""

from unittest.mock import patch

from services.callback_registry import CallbackRegistry


class TestCallbackRegistry:
    def test_register_and_resolve(self):
        registry = CallbackRegistry()

        token = registry.register((100, "alice"))

        assert len(token) == 8
        assert len(f"delete_ok:{token}".encode()) <= 64
        assert registry.resolve(token) == (100, "alice")

    def test_unknown_token(self):
        assert CallbackRegistry().resolve("deadbeef") is None

    def test_ttl_expiration(self):
        registry = CallbackRegistry(ttl_seconds=10)
        with patch("services.callback_registry.time.time", return_value=1000.0):
            token = registry.register("x")

        with patch("services.callback_registry.time.time", return_value=1011.0):
            assert registry.resolve(token) is None
        assert len(registry) == 0

    def test_lru_eviction(self):
        registry = CallbackRegistry(max_size=2)
        first = registry.register("a")
        second = registry.register("b")
        registry.resolve(first)

        registry.register("c")

        assert registry.resolve(first) == "a"
        assert registry.resolve(second) is None

    def test_discard(self):
        registry = CallbackRegistry()
        token = registry.register("a")

        assert registry.discard(token) is True
        assert registry.discard(token) is False

    def test_stats(self):
        registry = CallbackRegistry(max_size=5, ttl_seconds=60)
        registry.register("a")

        stats = registry.stats()

        assert stats["total_entries"] == 1
        assert stats["expired_entries"] == 0
        assert stats["max_size"] == 5
