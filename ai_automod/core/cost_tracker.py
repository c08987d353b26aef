"""
Cost tracking and budget enforcement.

The key-value store is the system of record: spend is only ever mutated with
the store's atomic increment, never read-modify-written, and budget status is
always derived from the ledger on demand.

Enforcement asymmetry:
- ``can_afford`` is the only hard stop and fails CLOSED when the ledger is
  unreadable.
- Alert thresholds are observability signals, never stops.
"""

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Optional, Tuple

from ai_automod.config.loader import BudgetConfig
from ai_automod.storage import keys
from ai_automod.storage.kv import KeyValueStore
from .errors import StoreError
from .models import BudgetStatus, CostRecord
from .pricing import minor_units_to_usd

logger = logging.getLogger(__name__)

# Individual cost records are kept long enough to audit a full month
COST_RECORD_TTL_SECONDS = 35 * 24 * 3600
ALERT_MARKER_TTL_SECONDS = 2 * 24 * 3600


def day_bucket(timestamp: float) -> str:
    """UTC day bucket, YYYY-MM-DD."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d")


def month_bucket(timestamp: float) -> str:
    """UTC month bucket, YYYY-MM."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m")


class CostTracker:
    """Budget ledger over the key-value store."""

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[BudgetConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.config = config or BudgetConfig()
        self._clock = clock

    async def can_afford(self, estimated_cost: int) -> bool:
        """Pre-flight check against the daily and monthly limits.

        Args:
            estimated_cost: Expected cost of the next call in minor units

        Returns:
            False whenever ``daily_spent + estimated_cost > daily_limit`` (or
            the monthly equivalent), or when the ledger cannot be read
        """
        try:
            daily_spent, monthly_spent = await self._read_spend()
        except StoreError as e:
            logger.error("[CostTracker] Ledger unavailable, refusing spend: %s", e)
            return False

        if daily_spent + estimated_cost > self.config.daily:
            logger.warning(
                "[CostTracker] Daily budget would be exceeded: spent=%d estimate=%d limit=%d",
                daily_spent, estimated_cost, self.config.daily,
            )
            return False
        if monthly_spent + estimated_cost > self.config.monthly:
            logger.warning(
                "[CostTracker] Monthly budget would be exceeded: spent=%d estimate=%d limit=%d",
                monthly_spent, estimated_cost, self.config.monthly,
            )
            return False
        return True

    async def record_cost(self, provider: str, cost: int, subject_id: str = "") -> CostRecord:
        """Record actual spend for one billable provider response.

        Increments the day, day+provider and month counters atomically,
        appends a CostRecord, invalidates the cached budget report and
        raises any newly crossed alert threshold.

        Args:
            provider: Provider id that produced the billable response
            cost: Actual cost in minor units
            subject_id: Subject the spend was made for

        Returns:
            The CostRecord written

        Raises:
            ValueError: If cost is not a positive integer
            StoreError: If the ledger cannot be written
        """
        if isinstance(cost, bool) or not isinstance(cost, int) or cost <= 0:
            raise ValueError("cost must be a positive integer of minor units")

        now = self._clock()
        record = CostRecord(
            provider=provider,
            cost=cost,
            timestamp=now,
            day=day_bucket(now),
            month=month_bucket(now),
            subject_id=subject_id,
        )

        daily_total = await self.store.increment(keys.cost_daily(record.day), cost)
        await self.store.increment(keys.cost_daily_provider(record.day, provider), cost)
        await self.store.increment(keys.cost_monthly(record.month), cost)
        await self.store.set(
            keys.cost_record(int(now * 1000), provider, uuid.uuid4().hex),
            record.to_json(),
            COST_RECORD_TTL_SECONDS,
        )

        logger.info(
            "[CostTracker] Recorded $%s for %s (daily total $%s)",
            minor_units_to_usd(cost), provider, minor_units_to_usd(daily_total),
        )
        await self._raise_alerts(record.day, daily_total)
        return record

    async def get_budget_status(self) -> BudgetStatus:
        """Derive the current budget position from the ledger.

        Raises:
            StoreError: If the ledger cannot be read
        """
        daily_spent, monthly_spent = await self._read_spend()
        return BudgetStatus(
            daily_spent=daily_spent,
            daily_limit=self.config.daily,
            monthly_spent=monthly_spent,
            monthly_limit=self.config.monthly,
            alert_thresholds=tuple(self.config.alert_thresholds),
        )

    async def get_provider_spend(self, providers: Iterable[str], day: Optional[str] = None) -> Dict[str, int]:
        """Per-provider spend for a day bucket (today by default)."""
        day = day or day_bucket(self._clock())
        spend = {}
        for provider in providers:
            spend[provider] = _as_int(await self.store.get(keys.cost_daily_provider(day, provider)))
        return spend

    async def _read_spend(self) -> Tuple[int, int]:
        now = self._clock()
        daily = await self.store.get(keys.cost_daily(day_bucket(now)))
        monthly = await self.store.get(keys.cost_monthly(month_bucket(now)))
        return _as_int(daily), _as_int(monthly)

    async def _raise_alerts(self, day: str, daily_total: int) -> None:
        fraction = daily_total / self.config.daily
        for threshold in sorted(self.config.alert_thresholds):
            if fraction < threshold:
                break
            pct = int(round(threshold * 100))
            try:
                first = await self.store.set_if_absent(
                    keys.budget_alert(day, pct), "1", ALERT_MARKER_TTL_SECONDS
                )
            except StoreError as e:
                logger.warning("[CostTracker] Could not record budget alert: %s", e)
                continue
            if first:
                logger.warning(
                    "[CostTracker] Budget alert: %d%% of daily budget used ($%s of $%s)",
                    pct, minor_units_to_usd(daily_total), minor_units_to_usd(self.config.daily),
                )


def _as_int(raw: Optional[str]) -> int:
    if raw is None:
        return 0
    try:
        return int(raw)
    except ValueError:
        raise StoreError(f"Ledger counter is not an integer: {raw!r}")
