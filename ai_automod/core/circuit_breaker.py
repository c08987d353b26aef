"""
Per-provider circuit breaker.

Tracks provider health in the key-value store and fast-fails calls to
unhealthy providers. Transitions:

    CLOSED -> OPEN       after ``failure_threshold`` consecutive failures
    OPEN -> HALF_OPEN    on the first call after the cooldown expires
    HALF_OPEN -> CLOSED  after ``success_threshold`` consecutive successes
    HALF_OPEN -> OPEN    on any failure, with a fresh cooldown

Only one probe runs while HALF_OPEN; concurrent callers are rejected as if
the circuit were still open.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

from ai_automod.config.loader import CircuitBreakerConfig
from ai_automod.storage import keys
from ai_automod.storage.kv import KeyValueStore
from .errors import AIError, AIErrorType, StoreError
from .models import CircuitState, CircuitStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitBreaker:
    """Circuit breaker shared by every orchestration in the process.

    State lives in the store, not on the instance, so separate processes
    sharing a store see the same circuits.
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

    async def execute(self, provider: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` through the provider's circuit.

        Args:
            provider: Provider id the circuit belongs to
            operation: Zero-argument coroutine factory making the provider call

        Returns:
            Whatever ``operation`` returns

        Raises:
            AIError: CIRCUIT_OPEN without invoking ``operation`` when the
                circuit is open or a recovery probe is already running;
                TIMEOUT when the call exceeds the configured timeout
            Exception: Any error raised by ``operation`` (counted as a failure)
        """
        status = await self.get_state(provider)

        if status.state == CircuitState.OPEN:
            now = self._clock()
            # A lost open_until counts as an elapsed cooldown
            if status.open_until is None or now >= status.open_until:
                await self._transition_to_half_open(provider)
                logger.info("[CircuitBreaker] %s - OPEN -> HALF_OPEN (cooldown expired)", provider)
                status = CircuitStatus(provider=provider, state=CircuitState.HALF_OPEN)
            else:
                raise AIError(
                    AIErrorType.CIRCUIT_OPEN,
                    f"Circuit breaker is OPEN for provider {provider}. Retry in {status.open_until - now:.0f}s",
                    provider,
                )

        probing = status.state == CircuitState.HALF_OPEN
        if probing and not await self._claim_probe(provider):
            raise AIError(
                AIErrorType.CIRCUIT_OPEN,
                f"Circuit breaker for provider {provider} is HALF_OPEN with a probe in flight",
                provider,
            )

        try:
            try:
                result = await asyncio.wait_for(operation(), timeout=self.config.timeout_seconds)
            except asyncio.TimeoutError:
                await self._record_failure(provider)
                raise AIError(
                    AIErrorType.TIMEOUT,
                    f"Operation exceeded timeout of {self.config.timeout_seconds}s",
                    provider,
                ) from None
            except Exception:
                await self._record_failure(provider)
                raise
            await self._record_success(provider)
            return result
        finally:
            if probing:
                await self._safe_delete(keys.circuit(provider, "probe"))

    async def get_state(self, provider: str) -> CircuitStatus:
        """Current circuit for a provider. Missing or unreadable state is CLOSED."""
        try:
            state_raw = await self.store.get(keys.circuit(provider, "state"))
            failures_raw = await self.store.get(keys.circuit(provider, "failures"))
            successes_raw = await self.store.get(keys.circuit(provider, "successes"))
            open_until_raw = await self.store.get(keys.circuit(provider, "open_until"))
        except StoreError as e:
            logger.warning("[CircuitBreaker] %s - state unreadable, assuming CLOSED: %s", provider, e)
            return CircuitStatus(provider=provider)

        try:
            state = CircuitState(state_raw) if state_raw else CircuitState.CLOSED
            return CircuitStatus(
                provider=provider,
                state=state,
                failure_count=int(failures_raw or 0),
                success_count=int(successes_raw or 0),
                open_until=float(open_until_raw) if open_until_raw else None,
            )
        except ValueError:
            logger.warning("[CircuitBreaker] %s - corrupt state, assuming CLOSED", provider)
            return CircuitStatus(provider=provider)

    async def reset(self, provider: str) -> None:
        """Manually return a circuit to CLOSED with cleared counters."""
        await self._transition_to_closed(provider)
        logger.info("[CircuitBreaker] %s - manually reset to CLOSED", provider)

    async def _claim_probe(self, provider: str) -> bool:
        try:
            return await self.store.set_if_absent(
                keys.circuit(provider, "probe"), "1", self.config.timeout_seconds + 1
            )
        except StoreError as e:
            logger.warning("[CircuitBreaker] %s - probe lock unavailable, allowing probe: %s", provider, e)
            return True

    async def _record_success(self, provider: str) -> None:
        status = await self.get_state(provider)
        await self._safe_set(keys.circuit(provider, "failures"), "0")

        if status.state != CircuitState.HALF_OPEN:
            return

        try:
            successes = await self.store.increment(keys.circuit(provider, "successes"), 1)
        except StoreError as e:
            logger.warning("[CircuitBreaker] %s - could not record success: %s", provider, e)
            return

        logger.info(
            "[CircuitBreaker] %s - success in HALF_OPEN (%d/%d)",
            provider, successes, self.config.success_threshold,
        )
        if successes >= self.config.success_threshold:
            await self._transition_to_closed(provider)
            logger.info("[CircuitBreaker] %s - HALF_OPEN -> CLOSED (%d successes)", provider, successes)

    async def _record_failure(self, provider: str) -> None:
        status = await self.get_state(provider)

        if status.state == CircuitState.HALF_OPEN:
            await self._transition_to_open(provider)
            logger.warning("[CircuitBreaker] %s - HALF_OPEN -> OPEN (failure during recovery probe)", provider)
            return
        if status.state == CircuitState.OPEN:
            return

        try:
            failures = await self.store.increment(keys.circuit(provider, "failures"), 1)
        except StoreError as e:
            logger.warning("[CircuitBreaker] %s - could not record failure: %s", provider, e)
            return

        logger.info(
            "[CircuitBreaker] %s - failure recorded (%d/%d)",
            provider, failures, self.config.failure_threshold,
        )
        if failures >= self.config.failure_threshold:
            await self._transition_to_open(provider)
            logger.warning("[CircuitBreaker] %s - CLOSED -> OPEN (%d failures)", provider, failures)

    async def _transition_to_open(self, provider: str) -> None:
        open_until = self._clock() + self.config.cooldown_seconds
        await self._safe_set(keys.circuit(provider, "open_until"), repr(open_until))
        await self._safe_set(keys.circuit(provider, "failures"), "0")
        await self._safe_set(keys.circuit(provider, "successes"), "0")
        await self._safe_set(keys.circuit(provider, "state"), CircuitState.OPEN.value)

    async def _transition_to_half_open(self, provider: str) -> None:
        await self._safe_set(keys.circuit(provider, "successes"), "0")
        await self._safe_set(keys.circuit(provider, "state"), CircuitState.HALF_OPEN.value)

    async def _transition_to_closed(self, provider: str) -> None:
        await self._safe_set(keys.circuit(provider, "failures"), "0")
        await self._safe_set(keys.circuit(provider, "successes"), "0")
        await self._safe_delete(keys.circuit(provider, "open_until"))
        await self._safe_set(keys.circuit(provider, "state"), CircuitState.CLOSED.value)

    async def _safe_set(self, key: str, value: str) -> None:
        try:
            await self.store.set(key, value)
        except StoreError as e:
            logger.warning("[CircuitBreaker] failed to write %s: %s", key, e)

    async def _safe_delete(self, key: str) -> None:
        try:
            await self.store.delete(key)
        except StoreError as e:
            logger.warning("[CircuitBreaker] failed to delete %s: %s", key, e)
