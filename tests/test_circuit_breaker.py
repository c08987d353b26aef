"""
Unit tests for the per-provider circuit breaker.

Tests state transitions, probe exclusivity, timeouts and store failures.
"""

import asyncio

import pytest

from ai_automod.config.loader import CircuitBreakerConfig
from ai_automod.core.circuit_breaker import CircuitBreaker
from ai_automod.core.errors import AIError, AIErrorType
from ai_automod.core.models import CircuitState
from ai_automod.storage.kv import InMemoryStore

from fakes import FailingStore, FakeClock


async def _ok():
    return "ok"


async def _boom():
    raise ConnectionError("boom")


class TestCircuitBreaker:
    """Test circuit breaker state machine."""

    def setup_method(self):
        self.clock = FakeClock()
        self.store = InMemoryStore(clock=self.clock)
        self.config = CircuitBreakerConfig(
            failure_threshold=3, success_threshold=2, cooldown_seconds=30, timeout_seconds=1
        )
        self.breaker = CircuitBreaker(self.store, self.config, clock=self.clock)

    async def _fail(self, provider="claude", times=1):
        for _ in range(times):
            with pytest.raises(ConnectionError):
                await self.breaker.execute(provider, _boom)

    async def _trip(self, provider="claude"):
        await self._fail(provider, self.config.failure_threshold)

    @pytest.mark.asyncio
    async def test_initial_state_closed(self):
        status = await self.breaker.get_state("claude")
        assert status.state == CircuitState.CLOSED
        assert status.failure_count == 0

    @pytest.mark.asyncio
    async def test_success_passes_result_through(self):
        assert await self.breaker.execute("claude", _ok) == "ok"

    @pytest.mark.asyncio
    async def test_opens_after_exact_threshold(self):
        await self._fail(times=self.config.failure_threshold - 1)
        assert (await self.breaker.get_state("claude")).state == CircuitState.CLOSED

        await self._fail()
        status = await self.breaker.get_state("claude")
        assert status.state == CircuitState.OPEN
        assert status.open_until == self.clock.now + 30

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self):
        await self._fail(times=2)
        await self.breaker.execute("claude", _ok)
        await self._fail(times=2)
        assert (await self.breaker.get_state("claude")).state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast_without_calling(self):
        await self._trip()
        calls = []

        async def operation():
            calls.append(1)
            return "ok"

        with pytest.raises(AIError) as exc_info:
            await self.breaker.execute("claude", operation)
        assert exc_info.value.error_type == AIErrorType.CIRCUIT_OPEN
        assert calls == []

    @pytest.mark.asyncio
    async def test_half_open_after_cooldown(self):
        await self._trip()
        self.clock.advance(30)

        assert await self.breaker.execute("claude", _ok) == "ok"
        status = await self.breaker.get_state("claude")
        assert status.state == CircuitState.HALF_OPEN
        assert status.success_count == 1

    @pytest.mark.asyncio
    async def test_half_open_closes_after_success_threshold(self):
        await self._trip()
        self.clock.advance(30)

        await self.breaker.execute("claude", _ok)
        await self.breaker.execute("claude", _ok)
        status = await self.breaker.get_state("claude")
        assert status.state == CircuitState.CLOSED
        assert status.success_count == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self):
        await self._trip()
        self.clock.advance(30)

        await self._fail()
        status = await self.breaker.get_state("claude")
        assert status.state == CircuitState.OPEN
        assert status.open_until == self.clock.now + 30

    @pytest.mark.asyncio
    async def test_half_open_allows_single_probe(self):
        await self._trip()
        self.clock.advance(30)
        release = asyncio.Event()

        async def slow_probe():
            await release.wait()
            return "ok"

        probe = asyncio.create_task(self.breaker.execute("claude", slow_probe))
        await asyncio.sleep(0)

        with pytest.raises(AIError) as exc_info:
            await self.breaker.execute("claude", _ok)
        assert exc_info.value.error_type == AIErrorType.CIRCUIT_OPEN

        release.set()
        assert await probe == "ok"

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self):
        async def hang():
            await asyncio.sleep(10)

        breaker = CircuitBreaker(
            self.store, CircuitBreakerConfig(failure_threshold=1, timeout_seconds=0.01), clock=self.clock
        )
        with pytest.raises(AIError) as exc_info:
            await breaker.execute("claude", hang)
        assert exc_info.value.error_type == AIErrorType.TIMEOUT
        assert (await breaker.get_state("claude")).state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_providers_isolated(self):
        await self._trip("claude")
        assert (await self.breaker.get_state("openai")).state == CircuitState.CLOSED
        assert await self.breaker.execute("openai", _ok) == "ok"

    @pytest.mark.asyncio
    async def test_reset(self):
        await self._trip()
        await self.breaker.reset("claude")
        status = await self.breaker.get_state("claude")
        assert status.state == CircuitState.CLOSED
        assert status.open_until is None

    @pytest.mark.asyncio
    async def test_corrupt_state_reads_closed(self):
        await self.store.set("v1:circuit:claude:state", "BROKEN")
        assert (await self.breaker.get_state("claude")).state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_store_failure_fails_open(self):
        breaker = CircuitBreaker(FailingStore(), self.config, clock=self.clock)
        assert (await breaker.get_state("claude")).state == CircuitState.CLOSED
        assert await breaker.execute("claude", _ok) == "ok"

    @pytest.mark.asyncio
    async def test_open_without_open_until_allows_probe(self):
        await self.store.set("v1:circuit:claude:state", CircuitState.OPEN.value)

        assert await self.breaker.execute("claude", _ok) == "ok"
        status = await self.breaker.get_state("claude")
        assert status.state == CircuitState.HALF_OPEN
        assert status.success_count == 1
