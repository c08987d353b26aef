"""
Key naming for the key-value store.

All keys live under a versioned namespace so a schema change can be rolled
out without colliding with old entries.
"""

KEY_PREFIX = "v1"


def _key(*parts: str) -> str:
    return ":".join((KEY_PREFIX,) + tuple(str(p) for p in parts))


def analysis(subject_id: str) -> str:
    """Cached AnalysisResult for a subject."""
    return _key("ai", "analysis", subject_id)


def inflight(subject_id: str) -> str:
    """Coalescing lock for a subject."""
    return _key("ai", "inflight", subject_id)


def cost_daily(day: str) -> str:
    """Total spend for a day bucket (YYYY-MM-DD)."""
    return _key("cost", "daily", day)


def cost_daily_provider(day: str, provider: str) -> str:
    """Spend for one provider within a day bucket."""
    return _key("cost", "daily", day, provider)


def cost_monthly(month: str) -> str:
    """Total spend for a month bucket (YYYY-MM)."""
    return _key("cost", "monthly", month)


def cost_record(timestamp_ms: int, provider: str, record_id: str) -> str:
    """Append-only CostRecord entry."""
    return _key("cost", "record", str(timestamp_ms), provider, record_id)


def budget_alert(day: str, threshold_pct: int) -> str:
    """Marker that a budget alert threshold was already raised for a day."""
    return _key("cost", "alert", day, str(threshold_pct))


def circuit(provider: str, field: str) -> str:
    """Circuit breaker field (state, failures, successes, open_until, probe)."""
    return _key("circuit", provider, field)
