"""
Result cache with trust-tiered lifetimes.

Lifetime is chosen from the caller-supplied trust tier only. Stable subjects
(high trust, or already classified as bad actors) are cached longest.
All store errors fail open: a read error is a miss and a write error is
logged, because staleness here only costs money, never safety.
"""

import logging
import time
from typing import Callable, Dict, Optional

from ai_automod.storage import keys
from ai_automod.storage.kv import KeyValueStore
from .errors import StoreError
from .models import AnalysisResult, TrustTier

logger = logging.getLogger(__name__)

HOUR = 3600

DEFAULT_LIFETIMES: Dict[TrustTier, int] = {
    TrustTier.HIGH: 48 * HOUR,
    TrustTier.MEDIUM: 24 * HOUR,
    TrustTier.LOW: 12 * HOUR,
    TrustTier.KNOWN_BAD: 7 * 24 * HOUR,
}


class TrustTierPolicy:
    """Maps trust tiers to cache lifetimes."""

    def __init__(self, lifetimes: Optional[Dict[TrustTier, int]] = None):
        self.lifetimes = dict(lifetimes or DEFAULT_LIFETIMES)
        missing = set(TrustTier) - set(self.lifetimes)
        if missing:
            raise ValueError(f"Missing cache lifetime for tiers: {sorted(t.value for t in missing)}")

    def lifetime_for(self, tier: TrustTier) -> int:
        """Cache lifetime in seconds for ``tier``."""
        return self.lifetimes[tier]

    @staticmethod
    def tier_for_score(trust_score: int, known_bad: bool = False) -> TrustTier:
        """Classify a 0-100 trust score. Known bad actors override the score."""
        if known_bad:
            return TrustTier.KNOWN_BAD
        if trust_score >= 60:
            return TrustTier.HIGH
        if trust_score >= 40:
            return TrustTier.MEDIUM
        return TrustTier.LOW


class ResultCache:
    """Stores AnalysisResults keyed by subject."""

    def __init__(
        self,
        store: KeyValueStore,
        policy: Optional[TrustTierPolicy] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.policy = policy or TrustTierPolicy()
        self._clock = clock

    async def get(self, subject_id: str) -> Optional[AnalysisResult]:
        """Return the cached result, or None on miss, expiry, corruption or store error."""
        key = keys.analysis(subject_id)
        try:
            raw = await self.store.get(key)
        except StoreError as e:
            logger.warning("[ResultCache] Read failed for %s, treating as miss: %s", subject_id, e)
            return None

        if raw is None:
            return None

        try:
            result = AnalysisResult.from_json(raw)
        except ValueError as e:
            logger.warning("[ResultCache] Invalid cached data for %s - clearing: %s", subject_id, e)
            await self.clear(subject_id)
            return None

        if result.subject_id != subject_id:
            logger.warning("[ResultCache] Cached result belongs to another subject - clearing %s", subject_id)
            await self.clear(subject_id)
            return None

        if self._clock() >= result.expires_at:
            return None

        return result

    async def put(self, result: AnalysisResult, tier: TrustTier) -> None:
        """Store ``result`` for the lifetime configured for ``tier``.

        The remaining lifetime is measured from the result's own
        ``expires_at`` so the store never outlives the recorded lifetime.
        """
        ttl = min(self.policy.lifetime_for(tier), result.expires_at - self._clock())
        if ttl <= 0:
            return
        try:
            await self.store.set(keys.analysis(result.subject_id), result.to_json(), ttl)
        except StoreError as e:
            logger.warning("[ResultCache] Failed to cache result for %s: %s", result.subject_id, e)
            return
        logger.info(
            "[ResultCache] Result cached for %s (tier=%s, ttl=%dh)",
            result.subject_id, tier.value, round(ttl / HOUR),
        )

    async def clear(self, subject_id: str) -> None:
        """Drop any cached result for the subject."""
        try:
            await self.store.delete(keys.analysis(subject_id))
        except StoreError as e:
            logger.warning("[ResultCache] Failed to clear cache for %s: %s", subject_id, e)
