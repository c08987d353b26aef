"""
Provider adapter interface.

Every AI vendor is wrapped in an :class:`AIProvider` exposing the same three
operations, so the selector can treat vendors interchangeably:

- ``analyze``: one sanitized request in, validated findings plus token usage out
- ``health_check``: cheap liveness probe that never raises
- ``cost_of``: exact cost in minor units for a token count

Retries for transient errors happen here; validation failures are terminal
and never consume a retry.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from ai_automod.config.loader import ProviderConfig, RetryConfig
from ai_automod.core.errors import AIError, AIErrorType
from ai_automod.core.models import AnalysisRequest, TokenUsage
from ai_automod.core.pricing import calculate_cost
from ai_automod.core.validator import ResponseValidator

logger = logging.getLogger(__name__)

HEALTH_CHECK_TIMEOUT_SECONDS = 5.0

MODERATION_INSTRUCTIONS = (
    "You are a content moderation assistant for a Reddit community. "
    "Assess the submission for dating intent, scam patterns and spam."
)


@dataclass(frozen=True)
class RawResponse:
    """Unvalidated vendor answer: JSON text or an already-decoded object."""
    payload: Union[str, Dict[str, Any]]
    usage: TokenUsage
    model: str


@dataclass(frozen=True)
class ProviderResponse:
    """Validated findings and the billable usage that produced them."""
    provider: str
    model: str
    findings: Dict[str, Any]
    usage: TokenUsage


def build_user_prompt(request: AnalysisRequest) -> str:
    """Frame the sanitized submission text for the model."""
    return (
        f"Trust tier: {request.trust_tier.value}\n"
        "Submission and recent history (PII removed):\n"
        f"{request.text}"
    )


def build_system_prompt(schema: Dict[str, Any]) -> str:
    return (
        MODERATION_INSTRUCTIONS
        + " Respond ONLY with a JSON object matching this schema and no other text:\n"
        + json.dumps(schema, sort_keys=True)
    )


class AIProvider(ABC):
    """Base class for vendor adapters.

    Subclasses implement :meth:`_call` (one vendor request, no retries) and
    :meth:`_ping`, and may extend :meth:`classify_error` for SDK exceptions.
    """

    provider_id: str = ""

    def __init__(
        self,
        config: ProviderConfig,
        retry: Optional[RetryConfig] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.config = config
        self.model = config.model
        self.retry = retry or RetryConfig()
        self._sleep = sleep or asyncio.sleep
        self._pricing = config.pricing()

    @abstractmethod
    async def _call(self, request: AnalysisRequest, schema: Dict[str, Any]) -> RawResponse:
        """Make exactly one vendor request."""

    @abstractmethod
    async def _ping(self) -> None:
        """Minimal vendor request used by :meth:`health_check`."""

    async def analyze(self, request: AnalysisRequest, validator: ResponseValidator) -> ProviderResponse:
        """Analyze a sanitized request with retry and exponential backoff.

        Args:
            request: Sanitized analysis request
            validator: Validator for the caller's findings schema

        Returns:
            ProviderResponse with validated findings and token usage

        Raises:
            AIError: VALIDATION_FAILED immediately (carrying the billed usage),
                or the last transient error once attempts are exhausted
        """
        correlation_id = request.correlation_id
        last_error: Optional[AIError] = None

        for attempt in range(1, self.retry.max_attempts + 1):
            logger.debug(
                "%s analysis attempt %d for %s (%s)",
                self.provider_id, attempt, request.subject_id, correlation_id,
            )
            try:
                raw = await self._call(request, validator.schema)
                findings = self._validate(raw, validator, correlation_id)
                logger.info(
                    "%s analysis success for %s (%s): %d tokens",
                    self.provider_id, request.subject_id, correlation_id, raw.usage.total_tokens,
                )
                return ProviderResponse(
                    provider=self.provider_id,
                    model=raw.model or self.model,
                    findings=findings,
                    usage=raw.usage,
                )
            except Exception as exc:
                error = self._to_ai_error(exc, correlation_id)
                logger.warning(
                    "%s analysis error for %s (%s), attempt %d/%d: %s %s",
                    self.provider_id, request.subject_id, correlation_id,
                    attempt, self.retry.max_attempts, error.error_type.name, error,
                )
                if not error.retryable:
                    raise error from (exc if exc is not error else None)
                last_error = error

            if attempt < self.retry.max_attempts:
                await self._sleep(self.retry.delay_for(attempt))

        raise last_error

    async def health_check(self) -> bool:
        """Return True if the vendor answers a minimal request within 5s.

        The ping is a billed vendor call that is not recorded as a cost.
        """
        try:
            await asyncio.wait_for(self._ping(), timeout=HEALTH_CHECK_TIMEOUT_SECONDS)
            return True
        except Exception as e:
            logger.warning("%s health check failed: %s", self.provider_id, e)
            return False

    def cost_of(self, input_tokens: int, output_tokens: int) -> int:
        """Cost in minor units for the given token counts."""
        return calculate_cost(self._pricing, TokenUsage(input_tokens, output_tokens))

    def classify_error(self, error: Exception) -> AIErrorType:
        """Map an arbitrary exception to the error taxonomy."""
        if isinstance(error, AIError):
            return error.error_type
        if isinstance(error, asyncio.TimeoutError):
            return AIErrorType.TIMEOUT
        status = getattr(error, "status_code", None) or getattr(error, "status", None)
        message = str(error).lower()
        if status == 429 or "rate limit" in message:
            return AIErrorType.RATE_LIMITED
        if "timeout" in message or "timed out" in message:
            return AIErrorType.TIMEOUT
        return AIErrorType.PROVIDER_ERROR

    def _validate(
        self, raw: RawResponse, validator: ResponseValidator, correlation_id: str
    ) -> Dict[str, Any]:
        try:
            if isinstance(raw.payload, str):
                return validator.parse_and_validate(raw.payload, self.provider_id, correlation_id)
            return validator.validate(raw.payload, self.provider_id, correlation_id)
        except AIError as e:
            e.usage = raw.usage
            raise

    def _to_ai_error(self, exc: Exception, correlation_id: str) -> AIError:
        if isinstance(exc, AIError):
            if exc.provider is None:
                exc.provider = self.provider_id
            if exc.correlation_id is None:
                exc.correlation_id = correlation_id
            return exc
        return AIError(
            self.classify_error(exc),
            f"{self.provider_id} request failed: {exc}",
            self.provider_id,
            correlation_id,
        )
