"""
Unit tests for the key-value store implementations.

Tests expiry, set-if-absent exclusivity and atomic increments.
"""

import asyncio
import os
import tempfile

import pytest

from ai_automod.core.errors import StoreError
from ai_automod.storage import keys
from ai_automod.storage.kv import InMemoryStore, SQLiteStore

from fakes import FakeClock


class TestInMemoryStore:
    """Test the in-memory store."""

    def setup_method(self):
        self.clock = FakeClock()
        self.store = InMemoryStore(clock=self.clock)

    @pytest.mark.asyncio
    async def test_get_missing_key(self):
        assert await self.store.get("missing") is None

    @pytest.mark.asyncio
    async def test_set_and_get(self):
        await self.store.set("k", "v")
        assert await self.store.get("k") == "v"

    @pytest.mark.asyncio
    async def test_expiry(self):
        await self.store.set("k", "v", ttl_seconds=10)
        self.clock.advance(9)
        assert await self.store.get("k") == "v"
        self.clock.advance(1)
        assert await self.store.get("k") is None

    @pytest.mark.asyncio
    async def test_set_if_absent(self):
        assert await self.store.set_if_absent("lock", "a", 30) is True
        assert await self.store.set_if_absent("lock", "b", 30) is False
        assert await self.store.get("lock") == "a"

    @pytest.mark.asyncio
    async def test_set_if_absent_after_expiry(self):
        await self.store.set_if_absent("lock", "a", 30)
        self.clock.advance(31)
        assert await self.store.set_if_absent("lock", "b", 30) is True
        assert await self.store.get("lock") == "b"

    @pytest.mark.asyncio
    async def test_concurrent_set_if_absent_single_winner(self):
        results = await asyncio.gather(*(self.store.set_if_absent("lock", str(i), 30) for i in range(20)))
        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_delete(self):
        await self.store.set("k", "v")
        await self.store.delete("k")
        await self.store.delete("k")
        assert await self.store.get("k") is None

    @pytest.mark.asyncio
    async def test_increment(self):
        assert await self.store.increment("counter", 5) == 5
        assert await self.store.increment("counter", 7) == 12
        assert await self.store.get("counter") == "12"

    @pytest.mark.asyncio
    async def test_increment_keeps_expiry(self):
        await self.store.set("counter", "1", ttl_seconds=10)
        await self.store.increment("counter")
        self.clock.advance(10)
        assert await self.store.get("counter") is None

    @pytest.mark.asyncio
    async def test_increment_non_integer(self):
        await self.store.set("counter", "abc")
        with pytest.raises(StoreError):
            await self.store.increment("counter")

    @pytest.mark.asyncio
    async def test_keys_prefix(self):
        await self.store.set("a:1", "x")
        await self.store.set("a:2", "x", ttl_seconds=1)
        await self.store.set("b:1", "x")
        self.clock.advance(2)
        assert self.store.keys("a:") == ["a:1"]


class TestSQLiteStore:
    """Test the SQLite-backed store."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "kv.db")
        self.clock = FakeClock()
        self.store = SQLiteStore(self.db_path, clock=self.clock)
        self.store.initialize_schema()

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_initialize_schema_idempotent(self):
        self.store.initialize_schema()
        assert os.path.exists(self.db_path)

    @pytest.mark.asyncio
    async def test_set_get_delete(self):
        await self.store.set("k", "v")
        assert await self.store.get("k") == "v"
        await self.store.delete("k")
        assert await self.store.get("k") is None

    @pytest.mark.asyncio
    async def test_expiry(self):
        await self.store.set("k", "v", ttl_seconds=5)
        self.clock.advance(5)
        assert await self.store.get("k") is None

    @pytest.mark.asyncio
    async def test_set_if_absent(self):
        assert await self.store.set_if_absent("lock", "a", 30) is True
        assert await self.store.set_if_absent("lock", "b", 30) is False
        self.clock.advance(30)
        assert await self.store.set_if_absent("lock", "c", 30) is True

    @pytest.mark.asyncio
    async def test_concurrent_increments_sum(self):
        await asyncio.gather(*(self.store.increment("counter", i) for i in range(1, 21)))
        assert await self.store.get("counter") == str(sum(range(1, 21)))

    @pytest.mark.asyncio
    async def test_increment_non_integer(self):
        await self.store.set("counter", "abc")
        with pytest.raises(StoreError):
            await self.store.increment("counter")

    @pytest.mark.asyncio
    async def test_missing_schema_raises_store_error(self):
        store = SQLiteStore(os.path.join(self.temp_dir, "empty.db"))
        with pytest.raises(StoreError):
            await store.get("k")


class TestKeys:
    """Test key naming."""

    def test_keys_are_versioned(self):
        assert keys.analysis("u1").startswith("v1:")
        assert keys.cost_daily("2024-01-01") != keys.cost_monthly("2024-01")

    def test_provider_keys_are_isolated(self):
        assert keys.circuit("claude", "state") != keys.circuit("openai", "state")
        assert keys.cost_daily_provider("2024-01-01", "claude") != keys.cost_daily_provider("2024-01-01", "openai")
