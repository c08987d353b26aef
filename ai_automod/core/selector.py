"""
Provider selection with failover.

Candidates are tried in configured order, each through its circuit breaker
and at most once per selection. Any failure, including an open circuit,
moves on to the next candidate. Selection never raises: exhausting every
candidate is reported as an ALL_PROVIDERS_UNAVAILABLE outcome.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from ai_automod.providers.base import AIProvider, ProviderResponse
from .circuit_breaker import CircuitBreaker
from .errors import AIError, AIErrorType
from .models import AnalysisRequest, CircuitStatus, TokenUsage
from .validator import ResponseValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderAttempt:
    """One candidate tried during a selection."""
    provider: str
    error_type: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error_type is None


@dataclass(frozen=True)
class SelectionOutcome:
    """Result of trying the candidate providers.

    ``billed`` lists every (provider, usage) pair the vendors charged for,
    including responses that later failed validation.
    """
    response: Optional[ProviderResponse]
    provider: str
    attempts: Tuple[ProviderAttempt, ...] = field(default_factory=tuple)
    billed: Tuple[Tuple[str, TokenUsage], ...] = field(default_factory=tuple)
    error_type: Optional[AIErrorType] = None


@dataclass(frozen=True)
class ProviderHealth:
    provider: str
    healthy: bool
    circuit: CircuitStatus


class ProviderSelector:
    """Routes a request to the first provider that answers."""

    def __init__(
        self,
        providers: Dict[str, AIProvider],
        breaker: CircuitBreaker,
        primary: str,
        fallbacks: Sequence[str] = (),
    ):
        self.providers = providers
        self.breaker = breaker
        self.candidates = self._candidate_order(primary, fallbacks)

    def _candidate_order(self, primary: str, fallbacks: Sequence[str]) -> List[str]:
        order: List[str] = []
        for provider_id in [primary, *fallbacks]:
            if provider_id in order:
                continue
            if provider_id not in self.providers:
                logger.info("[ProviderSelector] %s not configured, dropped from candidates", provider_id)
                continue
            order.append(provider_id)
        return order

    async def select_and_analyze(
        self, request: AnalysisRequest, validator: ResponseValidator
    ) -> SelectionOutcome:
        """Try each candidate once until one returns validated findings.

        Args:
            request: Sanitized analysis request
            validator: Validator for the findings schema

        Returns:
            SelectionOutcome with the winning response, or with
            ``response=None`` and ALL_PROVIDERS_UNAVAILABLE
        """
        attempts: List[ProviderAttempt] = []
        billed: List[Tuple[str, TokenUsage]] = []

        for provider_id in self.candidates:
            provider = self.providers[provider_id]
            try:
                response = await self.breaker.execute(
                    provider_id, lambda: provider.analyze(request, validator)
                )
            except AIError as e:
                if e.usage is not None:
                    billed.append((provider_id, e.usage))
                attempts.append(ProviderAttempt(provider_id, e.error_type.value))
                logger.warning(
                    "[ProviderSelector] %s failed for %s (%s): %s",
                    provider_id, request.subject_id, request.correlation_id, e.error_type.name,
                )
                continue
            except Exception as e:
                attempts.append(ProviderAttempt(provider_id, AIErrorType.PROVIDER_ERROR.value))
                logger.error(
                    "[ProviderSelector] %s raised unexpected error for %s (%s): %s",
                    provider_id, request.subject_id, request.correlation_id, e,
                )
                continue

            attempts.append(ProviderAttempt(provider_id))
            billed.append((provider_id, response.usage))
            if attempts[0].provider != provider_id:
                logger.info(
                    "[ProviderSelector] Fell back to %s for %s (%s)",
                    provider_id, request.subject_id, request.correlation_id,
                )
            return SelectionOutcome(
                response=response,
                provider=provider_id,
                attempts=tuple(attempts),
                billed=tuple(billed),
            )

        logger.error(
            "[ProviderSelector] All providers failed for %s (%s): %s",
            request.subject_id, request.correlation_id,
            ", ".join(f"{a.provider}={a.error_type}" for a in attempts) or "no candidates",
        )
        return SelectionOutcome(
            response=None,
            provider="none",
            attempts=tuple(attempts),
            billed=tuple(billed),
            error_type=AIErrorType.ALL_PROVIDERS_UNAVAILABLE,
        )

    async def health_report(self) -> List[ProviderHealth]:
        """Run every configured provider's health check concurrently.

        Pings are real one-token vendor calls. They are billed by the vendor
        but never written to the cost ledger, so keep this off the per-analysis
        path.
        """
        provider_ids = list(self.providers)
        checks = await asyncio.gather(*(self.providers[p].health_check() for p in provider_ids))
        report = []
        for provider_id, healthy in zip(provider_ids, checks):
            report.append(ProviderHealth(
                provider=provider_id,
                healthy=healthy,
                circuit=await self.breaker.get_state(provider_id),
            ))
        return report
