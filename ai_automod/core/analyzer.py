"""
Analysis orchestrator.

Composes the cache, budget ledger, coalescer, sanitizer and provider selector
into one request/response cycle for a subject. The caller always receives an
AnalysisOutcome: degraded paths are values with no result, never exceptions,
so the decision layer can route them to human review.
"""

import logging
import time
import uuid
from typing import Callable, Dict, List, Optional, Tuple

from ai_automod.config.loader import AutomodConfig
from ai_automod.providers.base import AIProvider
from ai_automod.providers.factory import build_providers
from ai_automod.storage.kv import KeyValueStore
from .audit import AuditSink, LoggingAuditSink
from .cache import ResultCache, TrustTierPolicy
from .circuit_breaker import CircuitBreaker
from .coalescer import RequestCoalescer
from .cost_tracker import CostTracker
from .errors import AIErrorType, StoreError
from .models import (
    AnalysisOutcome,
    AnalysisRequest,
    AnalysisResult,
    Disposition,
    OrchestrationEvent,
    TokenUsage,
    TrustTier,
)
from .sanitizer import ContentSanitizer
from .selector import ProviderSelector, SelectionOutcome
from .validator import ResponseValidator

logger = logging.getLogger(__name__)

UNEXPECTED_ERROR = "unexpected_error"


class Analyzer:
    """Single entry point for AI analysis of a subject.

    All collaborators are injected; construct one per process and share it
    across concurrent calls.
    """

    def __init__(
        self,
        cache: ResultCache,
        coalescer: RequestCoalescer,
        cost_tracker: CostTracker,
        selector: ProviderSelector,
        sanitizer: Optional[ContentSanitizer] = None,
        validator: Optional[ResponseValidator] = None,
        audit: Optional[AuditSink] = None,
        estimated_cost: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.coalescer = coalescer
        self.cost_tracker = cost_tracker
        self.selector = selector
        self.sanitizer = sanitizer or ContentSanitizer()
        self.validator = validator or ResponseValidator()
        self.audit = audit or LoggingAuditSink()
        if estimated_cost is None:
            estimated_cost = cost_tracker.config.estimated_cost_per_analysis
        self.estimated_cost = estimated_cost
        self._clock = clock

    async def analyze(
        self,
        subject_id: str,
        raw_text: str,
        trust_tier: TrustTier,
        correlation_id: Optional[str] = None,
    ) -> AnalysisOutcome:
        """Analyze one subject, spending only when nothing cheaper will do.

        Args:
            subject_id: Opaque subject key
            raw_text: Unsanitized submission text
            trust_tier: Tier driving the cache lifetime
            correlation_id: Trace id; generated when omitted

        Returns:
            AnalysisOutcome. ``result`` is None for every degraded disposition.
        """
        correlation_id = correlation_id or uuid.uuid4().hex

        cached = await self.cache.get(subject_id)
        if cached is not None:
            logger.info("[Analyzer] Cache hit for %s (%s)", subject_id, correlation_id)
            return self._finish(subject_id, AnalysisOutcome(
                disposition=Disposition.CACHED,
                correlation_id=correlation_id,
                result=cached,
                provider=cached.provider,
            ))

        if not self.selector.candidates:
            logger.warning("[Analyzer] No AI providers configured, skipping %s (%s)", subject_id, correlation_id)
            return self._finish(subject_id, AnalysisOutcome(
                disposition=Disposition.DEGRADED_NO_PROVIDER,
                correlation_id=correlation_id,
            ))

        if not await self.cost_tracker.can_afford(self.estimated_cost):
            logger.warning("[Analyzer] Budget exceeded, skipping %s (%s)", subject_id, correlation_id)
            return self._finish(subject_id, AnalysisOutcome(
                disposition=Disposition.DEGRADED_BUDGET,
                correlation_id=correlation_id,
                error_type=AIErrorType.BUDGET_EXCEEDED.value,
            ))

        acquired = await self.coalescer.acquire_lock(subject_id, correlation_id)
        if not acquired:
            result, acquired = await self.coalescer.wait_for_turn(subject_id, correlation_id, self.cache)
            if result is not None:
                return self._finish(subject_id, AnalysisOutcome(
                    disposition=Disposition.CACHED,
                    correlation_id=correlation_id,
                    result=result,
                    provider=result.provider,
                ))

        try:
            outcome = await self._analyze_uncached(subject_id, raw_text, trust_tier, correlation_id)
        except Exception as e:
            logger.exception("[Analyzer] Unexpected error analyzing %s (%s): %s", subject_id, correlation_id, e)
            outcome = AnalysisOutcome(
                disposition=Disposition.DEGRADED_ALL_FAILED,
                correlation_id=correlation_id,
                error_type=UNEXPECTED_ERROR,
            )
        finally:
            if acquired:
                await self.coalescer.release_lock(subject_id, correlation_id)

        return self._finish(subject_id, outcome)

    async def clear_cache(self, subject_id: str) -> None:
        """Drop the cached analysis for a subject."""
        await self.cache.clear(subject_id)
        logger.info("[Analyzer] Cache cleared for %s", subject_id)

    async def _analyze_uncached(
        self, subject_id: str, raw_text: str, trust_tier: TrustTier, correlation_id: str
    ) -> AnalysisOutcome:
        sanitized = self.sanitizer.sanitize(raw_text)
        request = AnalysisRequest(
            subject_id=subject_id,
            text=sanitized.sanitized_content,
            trust_tier=trust_tier,
            correlation_id=correlation_id,
        )

        selection = await self.selector.select_and_analyze(request, self.validator)
        costs = await self._record_costs(subject_id, selection)
        attempts = tuple(a.provider for a in selection.attempts)

        if selection.response is None:
            return AnalysisOutcome(
                disposition=Disposition.DEGRADED_ALL_FAILED,
                correlation_id=correlation_id,
                cost=sum(cost for _, cost in costs),
                error_type=selection.error_type.value,
                attempts=attempts,
            )

        response = selection.response
        now = self._clock()
        lifetime = self.cache.policy.lifetime_for(trust_tier)
        result = AnalysisResult(
            subject_id=subject_id,
            provider=response.provider,
            correlation_id=correlation_id,
            findings=response.findings,
            cache_ttl_seconds=lifetime,
            usage=response.usage,
            cost=self._cost_of(response.provider, response.usage),
            created_at=now,
            expires_at=now + lifetime,
            model=response.model,
        )
        await self.cache.put(result, trust_tier)

        return AnalysisOutcome(
            disposition=Disposition.ANALYZED,
            correlation_id=correlation_id,
            result=result,
            provider=result.provider,
            cost=sum(cost for _, cost in costs),
            attempts=attempts,
        )

    async def _record_costs(self, subject_id: str, selection: SelectionOutcome) -> List[Tuple[str, int]]:
        """Write one CostRecord per billed provider response."""
        recorded = []
        for provider_id, usage in selection.billed:
            cost = self._cost_of(provider_id, usage)
            if cost <= 0:
                continue
            try:
                await self.cost_tracker.record_cost(provider_id, cost, subject_id)
            except StoreError as e:
                logger.error(
                    "[Analyzer] Failed to record cost of %d for %s on %s: %s",
                    cost, subject_id, provider_id, e,
                )
            recorded.append((provider_id, cost))
        return recorded

    def _cost_of(self, provider_id: str, usage: TokenUsage) -> int:
        provider = self.selector.providers[provider_id]
        return provider.cost_of(usage.input_tokens, usage.output_tokens)

    def _finish(self, subject_id: str, outcome: AnalysisOutcome) -> AnalysisOutcome:
        event = OrchestrationEvent(
            correlation_id=outcome.correlation_id,
            subject_id=subject_id,
            provider=outcome.provider,
            cost=outcome.cost,
            cache_hit=outcome.disposition == Disposition.CACHED,
            disposition=outcome.disposition,
            timestamp=self._clock(),
            error_type=outcome.error_type,
        )
        try:
            self.audit.emit(event)
        except Exception as e:
            logger.error("[Analyzer] Audit sink failed for %s: %s", outcome.correlation_id, e)
        return outcome


def build_analyzer(
    config: AutomodConfig,
    store: KeyValueStore,
    providers: Optional[Dict[str, AIProvider]] = None,
    audit: Optional[AuditSink] = None,
) -> Analyzer:
    """Wire an Analyzer and its collaborators from configuration.

    Args:
        config: Loaded configuration
        store: Shared key-value store
        providers: Pre-built providers; built from config when omitted
        audit: Audit sink; logs events when omitted
    """
    if providers is None:
        providers = build_providers(config)
    breaker = CircuitBreaker(store, config.circuit_breaker)
    cache = ResultCache(store, TrustTierPolicy(config.cache.lifetimes))
    selector = ProviderSelector(
        providers, breaker, config.selection.primary, config.selection.fallbacks
    )
    return Analyzer(
        cache=cache,
        coalescer=RequestCoalescer(store, config.coalescer),
        cost_tracker=CostTracker(store, config.budget),
        selector=selector,
        audit=audit,
    )
