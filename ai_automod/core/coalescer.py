"""
Request coalescing.

Collapses concurrently arriving requests for the same subject into one paid
provider call. The first request takes a short-lived lock with an atomic
set-if-absent; later requests poll the result cache with exponential backoff
until the holder's result lands or the wait budget runs out.

This is a best-effort cost optimization, not a mutex. When the store is
unavailable every request is let through: duplicate spend is preferable to
stalling moderation.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Tuple

from ai_automod.config.loader import CoalescerConfig
from ai_automod.storage import keys
from ai_automod.storage.kv import KeyValueStore
from .cache import ResultCache
from .errors import StoreError
from .models import AnalysisResult, CoalescingLock

logger = logging.getLogger(__name__)


class RequestCoalescer:
    """Lock manager keyed by subject id."""

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[CoalescerConfig] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.config = config or CoalescerConfig()
        self._clock = clock
        self._sleep = sleep

    async def acquire_lock(self, subject_id: str, correlation_id: str) -> bool:
        """Try to become the single in-flight analysis for ``subject_id``.

        Returns:
            True if the lock was acquired, or if the store is unavailable;
            False if another request already holds it
        """
        now = self._clock()
        lock = CoalescingLock(
            subject_id=subject_id,
            token=correlation_id,
            started_at=now,
            expires_at=now + self.config.lock_ttl_seconds,
        )
        try:
            acquired = await self.store.set_if_absent(
                keys.inflight(subject_id), lock.to_json(), self.config.lock_ttl_seconds
            )
        except StoreError as e:
            logger.error(
                "[RequestCoalescer] Error acquiring lock for %s (%s), allowing request: %s",
                subject_id, correlation_id, e,
            )
            return True

        if acquired:
            logger.debug("[RequestCoalescer] Lock acquired for %s (%s)", subject_id, correlation_id)
        else:
            logger.info("[RequestCoalescer] Lock already held for %s (%s)", subject_id, correlation_id)
        return acquired

    async def release_lock(self, subject_id: str, correlation_id: str) -> None:
        """Release the lock if this request still holds it.

        A lock that expired and was re-taken by another request is left alone.
        Errors are logged; the lock auto-expires anyway.
        """
        key = keys.inflight(subject_id)
        try:
            current = await self.get_in_flight(subject_id)
            if current is not None and current.token != correlation_id:
                logger.info(
                    "[RequestCoalescer] Lock for %s now held by %s, not releasing",
                    subject_id, current.token,
                )
                return
            await self.store.delete(key)
            logger.debug("[RequestCoalescer] Lock released for %s", subject_id)
        except StoreError as e:
            logger.error(
                "[RequestCoalescer] Error releasing lock for %s (will auto-expire): %s", subject_id, e
            )

    async def wait_for_result(
        self, subject_id: str, cache: ResultCache, deadline: Optional[float] = None
    ) -> Optional[AnalysisResult]:
        """Poll the cache for another holder's result.

        Polls start at ``initial_poll_seconds`` and grow by ``poll_multiplier``
        up to ``max_poll_seconds``. Gives up at ``deadline`` (default
        ``max_wait_seconds`` from now), or as soon as the lock disappears
        without a result being cached.

        Returns:
            The cached result, or None so the caller re-tries the lock
        """
        started = self._clock()
        if deadline is None:
            deadline = started + self.config.max_wait_seconds
        delay = self.config.initial_poll_seconds

        logger.info("[RequestCoalescer] Waiting for result for %s", subject_id)

        while True:
            result = await cache.get(subject_id)
            if result is not None:
                logger.info(
                    "[RequestCoalescer] Result found for %s after %.1fs",
                    subject_id, self._clock() - started,
                )
                return result

            try:
                holder = await self.store.get(keys.inflight(subject_id))
            except StoreError as e:
                logger.error("[RequestCoalescer] Error checking lock for %s: %s", subject_id, e)
                return None
            if holder is None:
                # Holder finished without caching (degraded) or crashed and expired
                return await cache.get(subject_id)

            if self._clock() >= deadline:
                logger.warning(
                    "[RequestCoalescer] Wait timeout for %s after %.1fs",
                    subject_id, self._clock() - started,
                )
                return None

            await self._sleep(min(delay, max(deadline - self._clock(), 0)))
            delay = min(delay * self.config.poll_multiplier, self.config.max_poll_seconds)

    async def wait_for_turn(
        self, subject_id: str, correlation_id: str, cache: ResultCache
    ) -> Tuple[Optional[AnalysisResult], bool]:
        """Wait behind the current holder until its result lands or the lock is ours.

        A holder that ends without caching frees the lock for every waiter at
        once. One of them re-takes it and the rest go back to waiting on the
        new holder. A waiter proceeds without the lock only once
        ``max_wait_seconds`` has passed.

        Returns:
            ``(result, False)`` when another request cached a result,
            ``(None, True)`` when this request now holds the lock, or
            ``(None, False)`` when the wait ran out with the lock still held
        """
        deadline = self._clock() + self.config.max_wait_seconds
        while True:
            result = await self.wait_for_result(subject_id, cache, deadline)
            if result is not None:
                return result, False
            if await self.acquire_lock(subject_id, correlation_id):
                return None, True
            if self._clock() >= deadline:
                logger.warning(
                    "[RequestCoalescer] Proceeding without lock for %s (%s)", subject_id, correlation_id
                )
                return None, False

    async def get_in_flight(self, subject_id: str) -> Optional[CoalescingLock]:
        """Return the current lock, if any. Corrupt lock data is deleted.

        Raises:
            StoreError: If the store cannot be read
        """
        key = keys.inflight(subject_id)
        raw = await self.store.get(key)
        if raw is None:
            return None
        try:
            return CoalescingLock.from_json(raw)
        except ValueError:
            logger.warning("[RequestCoalescer] Cleaning up corrupted lock data for %s", subject_id)
            await self.store.delete(key)
            return None
