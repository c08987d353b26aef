"""
Unit tests for request coalescing.
"""

import pytest

from ai_automod.config.loader import CoalescerConfig
from ai_automod.core.cache import ResultCache
from ai_automod.core.coalescer import RequestCoalescer
from ai_automod.core.models import AnalysisResult, TokenUsage, TrustTier
from ai_automod.storage import keys
from ai_automod.storage.kv import InMemoryStore

from fakes import VALID_FINDINGS, FailingStore, FakeClock, FakeSleep


def make_result(clock) -> AnalysisResult:
    return AnalysisResult(
        subject_id="u1",
        provider="claude",
        correlation_id="holder",
        findings=VALID_FINDINGS,
        cache_ttl_seconds=3600,
        usage=TokenUsage(10, 10),
        cost=60,
        created_at=clock(),
        expires_at=clock() + 3600,
    )


class TestRequestCoalescer:
    """Test lock acquisition, release and waiting."""

    def setup_method(self):
        self.clock = FakeClock()
        self.sleep = FakeSleep(self.clock)
        self.store = InMemoryStore(clock=self.clock)
        self.cache = ResultCache(self.store, clock=self.clock)
        self.coalescer = RequestCoalescer(
            self.store, CoalescerConfig(), clock=self.clock, sleep=self.sleep
        )

    @pytest.mark.asyncio
    async def test_single_holder(self):
        assert await self.coalescer.acquire_lock("u1", "a") is True
        assert await self.coalescer.acquire_lock("u1", "b") is False
        assert await self.coalescer.acquire_lock("u2", "b") is True

    @pytest.mark.asyncio
    async def test_lock_records_holder(self):
        await self.coalescer.acquire_lock("u1", "a")
        lock = await self.coalescer.get_in_flight("u1")
        assert lock.token == "a"
        assert lock.expires_at == self.clock.now + 30

    @pytest.mark.asyncio
    async def test_lock_auto_expires(self):
        await self.coalescer.acquire_lock("u1", "a")
        self.clock.advance(30)
        assert await self.coalescer.acquire_lock("u1", "b") is True

    @pytest.mark.asyncio
    async def test_release(self):
        await self.coalescer.acquire_lock("u1", "a")
        await self.coalescer.release_lock("u1", "a")
        assert await self.coalescer.get_in_flight("u1") is None

    @pytest.mark.asyncio
    async def test_release_leaves_other_holder(self):
        await self.coalescer.acquire_lock("u1", "a")
        self.clock.advance(31)
        await self.coalescer.acquire_lock("u1", "b")
        await self.coalescer.release_lock("u1", "a")
        assert (await self.coalescer.get_in_flight("u1")).token == "b"

    @pytest.mark.asyncio
    async def test_corrupt_lock_cleaned(self):
        await self.store.set(keys.inflight("u1"), "garbage", 30)
        assert await self.coalescer.get_in_flight("u1") is None
        assert await self.store.get(keys.inflight("u1")) is None

    @pytest.mark.asyncio
    async def test_wait_returns_cached_result(self):
        await self.coalescer.acquire_lock("u1", "holder")
        await self.cache.put(make_result(self.clock), TrustTier.LOW)
        result = await self.coalescer.wait_for_result("u1", self.cache)
        assert result.correlation_id == "holder"
        assert self.sleep.delays == []

    @pytest.mark.asyncio
    async def test_wait_backoff_schedule_and_timeout(self):
        await self.store.set(keys.inflight("u1"), "held", ttl_seconds=1000)
        coalescer = RequestCoalescer(
            self.store, CoalescerConfig(lock_ttl_seconds=1000, max_wait_seconds=5),
            clock=self.clock, sleep=self.sleep,
        )
        assert await coalescer.wait_for_result("u1", self.cache) is None
        assert self.sleep.delays[:3] == [0.5, 0.75, 1.0]
        assert all(d <= 1.0 for d in self.sleep.delays)
        assert sum(self.sleep.delays) == pytest.approx(5.0)

    @pytest.mark.asyncio
    async def test_wait_returns_early_when_lock_released(self):
        result = await self.coalescer.wait_for_result("u1", self.cache)
        assert result is None
        assert self.sleep.delays == []

    @pytest.mark.asyncio
    async def test_store_failure_fails_open(self):
        coalescer = RequestCoalescer(FailingStore(), clock=self.clock, sleep=self.sleep)
        assert await coalescer.acquire_lock("u1", "a") is True
        assert await coalescer.acquire_lock("u1", "b") is True
        await coalescer.release_lock("u1", "a")
        assert await coalescer.wait_for_result("u1", ResultCache(FailingStore())) is None


class StaleLockViewStore(InMemoryStore):
    """Reports the lock as gone once while another waiter has already re-taken it."""

    def __init__(self, clock):
        super().__init__(clock=clock)
        self.stale_reads = 1

    async def get(self, key):
        if key == keys.inflight("u1") and self.stale_reads:
            self.stale_reads -= 1
            return None
        return await super().get(key)


class TestWaitForTurn:
    """Test waiting behind a holder until a result or the lock."""

    def setup_method(self):
        self.clock = FakeClock()
        self.sleep = FakeSleep(self.clock)
        self.store = InMemoryStore(clock=self.clock)
        self.cache = ResultCache(self.store, clock=self.clock)
        self.config = CoalescerConfig(lock_ttl_seconds=1000, max_wait_seconds=5)

    def _coalescer(self, store=None):
        return RequestCoalescer(store or self.store, self.config, clock=self.clock, sleep=self.sleep)

    @pytest.mark.asyncio
    async def test_free_lock_is_taken(self):
        coalescer = self._coalescer()
        result, acquired = await coalescer.wait_for_turn("u1", "b", self.cache)
        assert result is None
        assert acquired is True
        assert (await coalescer.get_in_flight("u1")).token == "b"

    @pytest.mark.asyncio
    async def test_cached_result_returned(self):
        await self.store.set(keys.inflight("u1"), "held", 1000)
        await self.cache.put(make_result(self.clock), TrustTier.LOW)
        result, acquired = await self._coalescer().wait_for_turn("u1", "b", self.cache)
        assert result.correlation_id == "holder"
        assert acquired is False

    @pytest.mark.asyncio
    async def test_gives_up_only_after_full_wait(self):
        await self.store.set(keys.inflight("u1"), "held", 1000)
        result, acquired = await self._coalescer().wait_for_turn("u1", "b", self.cache)
        assert (result, acquired) == (None, False)
        assert sum(self.sleep.delays) == pytest.approx(5.0)
        assert await self.store.get(keys.inflight("u1")) == "held"

    @pytest.mark.asyncio
    async def test_lost_reacquire_goes_back_to_waiting(self):
        store = StaleLockViewStore(self.clock)
        cache = ResultCache(store, clock=self.clock)
        await store.set(keys.inflight("u1"), "new-holder", 1000)

        async def new_holder_finishes(delay):
            self.sleep.delays.append(delay)
            await cache.put(make_result(self.clock), TrustTier.LOW)

        coalescer = RequestCoalescer(store, self.config, clock=self.clock, sleep=new_holder_finishes)
        result, acquired = await coalescer.wait_for_turn("u1", "b", cache)

        assert result.correlation_id == "holder"
        assert acquired is False
        assert len(self.sleep.delays) == 1
