"""
Data models for the analysis pipeline.

All values are immutable. Results are replaced, never patched.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class TrustTier(Enum):
    """Coarse classification of how much scrutiny a subject needs."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    KNOWN_BAD = "known_bad"


class Disposition(Enum):
    """Final disposition of one orchestration."""
    ANALYZED = "analyzed"
    CACHED = "cached"
    DEGRADED_BUDGET = "degraded-budget"
    DEGRADED_NO_PROVIDER = "degraded-no-provider"
    DEGRADED_ALL_FAILED = "degraded-all-failed"

    @property
    def degraded(self) -> bool:
        return self.value.startswith("degraded")


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class TokenUsage:
    """Token usage reported by a provider for one call."""
    input_tokens: int
    output_tokens: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used (input + output)."""
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class AnalysisRequest:
    """Sanitized request handed to a provider adapter."""
    subject_id: str
    text: str
    trust_tier: TrustTier
    correlation_id: str


@dataclass(frozen=True)
class AnalysisResult:
    """Validated provider findings for one subject.

    ``cache_ttl_seconds`` and ``expires_at`` are fixed when the result is
    created and never recomputed by the cache.
    """
    subject_id: str
    provider: str
    correlation_id: str
    findings: Dict[str, Any]
    cache_ttl_seconds: int
    usage: TokenUsage
    cost: int
    created_at: float
    expires_at: float
    model: str = ""

    def to_json(self) -> str:
        """Serialize deterministically for storage."""
        return json.dumps({
            "subject_id": self.subject_id,
            "provider": self.provider,
            "correlation_id": self.correlation_id,
            "findings": self.findings,
            "cache_ttl_seconds": self.cache_ttl_seconds,
            "usage": {
                "input_tokens": self.usage.input_tokens,
                "output_tokens": self.usage.output_tokens,
            },
            "cost": self.cost,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "model": self.model,
        }, sort_keys=True, separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str) -> "AnalysisResult":
        """Parse a stored result.

        Raises:
            ValueError: If the payload is malformed or missing fields
        """
        try:
            data = json.loads(raw)
            usage = data["usage"]
            return cls(
                subject_id=data["subject_id"],
                provider=data["provider"],
                correlation_id=data["correlation_id"],
                findings=data["findings"],
                cache_ttl_seconds=int(data["cache_ttl_seconds"]),
                usage=TokenUsage(
                    input_tokens=int(usage["input_tokens"]),
                    output_tokens=int(usage["output_tokens"]),
                ),
                cost=int(data["cost"]),
                created_at=float(data["created_at"]),
                expires_at=float(data["expires_at"]),
                model=data.get("model", ""),
            )
        except (KeyError, TypeError, json.JSONDecodeError) as e:
            raise ValueError(f"Malformed cached analysis: {e}") from e


@dataclass(frozen=True)
class CostRecord:
    """Append-only record of one billable provider response.

    Costs are integral minor units (micro-dollars), never floats.
    """
    provider: str
    cost: int
    timestamp: float
    day: str
    month: str
    subject_id: str = ""

    def to_json(self) -> str:
        return json.dumps({
            "provider": self.provider,
            "cost": self.cost,
            "timestamp": self.timestamp,
            "day": self.day,
            "month": self.month,
            "subject_id": self.subject_id,
        }, sort_keys=True)


@dataclass(frozen=True)
class BudgetStatus:
    """Budget position derived from the ledger on demand. Never persisted."""
    daily_spent: int
    daily_limit: int
    monthly_spent: int
    monthly_limit: int
    alert_thresholds: Tuple[float, ...] = (0.5, 0.75, 0.9)

    @property
    def daily_remaining(self) -> int:
        return max(self.daily_limit - self.daily_spent, 0)

    @property
    def monthly_remaining(self) -> int:
        return max(self.monthly_limit - self.monthly_spent, 0)

    @property
    def daily_percent_used(self) -> float:
        if self.daily_limit <= 0:
            return 100.0
        return self.daily_spent * 100.0 / self.daily_limit

    @property
    def monthly_percent_used(self) -> float:
        if self.monthly_limit <= 0:
            return 100.0
        return self.monthly_spent * 100.0 / self.monthly_limit

    @property
    def over_budget(self) -> bool:
        return (self.daily_spent >= self.daily_limit
                or self.monthly_spent >= self.monthly_limit)

    @property
    def alert_level(self) -> Optional[float]:
        """Highest crossed alert threshold on the daily budget, or None."""
        fraction = self.daily_percent_used / 100.0
        crossed = [t for t in self.alert_thresholds if fraction >= t]
        return max(crossed) if crossed else None


@dataclass(frozen=True)
class CircuitStatus:
    """Snapshot of one provider's circuit."""
    provider: str
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    open_until: Optional[float] = None


@dataclass(frozen=True)
class CoalescingLock:
    """Exclusivity marker for one subject. At most one holder at a time."""
    subject_id: str
    token: str
    started_at: float
    expires_at: float

    def to_json(self) -> str:
        return json.dumps({
            "subject_id": self.subject_id,
            "token": self.token,
            "started_at": self.started_at,
            "expires_at": self.expires_at,
        })

    @classmethod
    def from_json(cls, raw: str) -> "CoalescingLock":
        try:
            data = json.loads(raw)
            return cls(
                subject_id=data["subject_id"],
                token=data["token"],
                started_at=float(data["started_at"]),
                expires_at=float(data["expires_at"]),
            )
        except (KeyError, TypeError, json.JSONDecodeError) as e:
            raise ValueError(f"Malformed coalescing lock: {e}") from e


@dataclass(frozen=True)
class OrchestrationEvent:
    """One audit record per orchestration outcome."""
    correlation_id: str
    subject_id: str
    provider: str
    cost: int
    cache_hit: bool
    disposition: Disposition
    timestamp: float
    error_type: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "correlation_id": self.correlation_id,
            "subject_id": self.subject_id,
            "provider": self.provider,
            "cost": self.cost,
            "cache_hit": self.cache_hit,
            "disposition": self.disposition.value,
            "timestamp": self.timestamp,
            "error_type": self.error_type,
        }


@dataclass(frozen=True)
class AnalysisOutcome:
    """What the decision layer receives from the analyzer.

    A degraded outcome carries no result and always requires human review;
    it can never be mistaken for a verified-safe analysis.
    """
    disposition: Disposition
    correlation_id: str
    result: Optional[AnalysisResult] = None
    provider: str = "none"
    cost: int = 0
    error_type: Optional[str] = None
    attempts: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def degraded(self) -> bool:
        return self.disposition.degraded

    @property
    def needs_review(self) -> bool:
        return self.degraded or self.result is None
