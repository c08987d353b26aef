"""
Error taxonomy for AI analysis.

Adapters recover transient errors locally via retry; the selector recovers
provider-level terminal errors via failover. Only budget and all-providers
failures reach the caller, and then only as degraded outcomes.
"""

from enum import Enum
from typing import Optional

from .models import TokenUsage


class AIErrorType(Enum):
    """Classification of AI pipeline failures."""
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    VALIDATION_FAILED = "validation_failed"
    BUDGET_EXCEEDED = "budget_exceeded"
    CIRCUIT_OPEN = "circuit_open"
    ALL_PROVIDERS_UNAVAILABLE = "all_providers_unavailable"
    PROVIDER_ERROR = "provider_error"


RETRYABLE_ERRORS = frozenset({
    AIErrorType.RATE_LIMITED,
    AIErrorType.TIMEOUT,
    AIErrorType.PROVIDER_ERROR,
})


class AIError(Exception):
    """Raised by adapters, the circuit breaker and the validator."""

    def __init__(
        self,
        error_type: AIErrorType,
        message: str,
        provider: Optional[str] = None,
        correlation_id: Optional[str] = None,
        usage: Optional[TokenUsage] = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.provider = provider
        self.correlation_id = correlation_id
        # Set when the provider billed for the response that failed
        self.usage = usage

    @property
    def retryable(self) -> bool:
        """Whether the same provider may be tried again for this error."""
        return self.error_type in RETRYABLE_ERRORS

    def __repr__(self) -> str:
        return f"AIError({self.error_type.name}, {str(self)!r}, provider={self.provider!r})"


class StoreError(Exception):
    """Raised when the key-value store backend is unavailable or corrupt."""
