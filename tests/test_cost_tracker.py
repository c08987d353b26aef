"""
Unit tests for cost tracking and budget enforcement.
"""

import asyncio
import json
import logging
import random

import pytest

from ai_automod.config.loader import BudgetConfig
from ai_automod.core.cost_tracker import CostTracker, day_bucket, month_bucket
from ai_automod.core.errors import StoreError
from ai_automod.storage import keys
from ai_automod.storage.kv import InMemoryStore

from fakes import FailingStore, FakeClock


class TestBuckets:
    """Test UTC day and month buckets."""

    def test_day_bucket(self):
        assert day_bucket(0) == "1970-01-01"

    def test_month_bucket(self):
        assert month_bucket(1_700_000_000) == "2023-11"


class TestCostTracker:
    """Test ledger writes and budget checks."""

    def setup_method(self):
        self.clock = FakeClock()
        self.store = InMemoryStore(clock=self.clock)
        self.config = BudgetConfig(daily=1_000_000, monthly=10_000_000)
        self.tracker = CostTracker(self.store, self.config, clock=self.clock)

    @pytest.mark.asyncio
    async def test_record_cost_updates_all_counters(self):
        record = await self.tracker.record_cost("claude", 2000, "u1")
        day, month = record.day, record.month

        assert await self.store.get(keys.cost_daily(day)) == "2000"
        assert await self.store.get(keys.cost_daily_provider(day, "claude")) == "2000"
        assert await self.store.get(keys.cost_monthly(month)) == "2000"

    @pytest.mark.asyncio
    async def test_record_cost_writes_record(self):
        await self.tracker.record_cost("openai", 1500, "u1")
        record_keys = self.store.keys("v1:cost:record:")
        assert len(record_keys) == 1
        stored = json.loads(await self.store.get(record_keys[0]))
        assert stored["provider"] == "openai"
        assert stored["cost"] == 1500
        assert stored["subject_id"] == "u1"

    @pytest.mark.asyncio
    async def test_record_cost_writes_only_ledger_keys(self):
        record = await self.tracker.record_cost("claude", 1)
        written = self.store.keys()

        assert [k for k in written if not k.startswith("v1:cost:record:")] == sorted([
            keys.cost_daily(record.day),
            keys.cost_daily_provider(record.day, "claude"),
            keys.cost_monthly(record.month),
        ])
        assert len(written) == 4

    @pytest.mark.asyncio
    @pytest.mark.parametrize("cost", [0, -5, 1.5, True])
    async def test_record_cost_rejects_invalid(self, cost):
        with pytest.raises(ValueError):
            await self.tracker.record_cost("claude", cost)

    @pytest.mark.asyncio
    async def test_concurrent_records_sum_exactly(self):
        costs = [random.randint(1, 5000) for _ in range(200)]
        await asyncio.gather(*(
            self.tracker.record_cost(random.choice(["claude", "openai"]), c) for c in costs
        ))
        status = await self.tracker.get_budget_status()
        assert status.daily_spent == sum(costs)
        assert status.monthly_spent == sum(costs)

        spend = await self.tracker.get_provider_spend(["claude", "openai"])
        assert spend["claude"] + spend["openai"] == sum(costs)

    @pytest.mark.asyncio
    async def test_can_afford_boundary(self):
        await self.tracker.record_cost("claude", 900_000)
        assert await self.tracker.can_afford(100_000) is True
        assert await self.tracker.can_afford(100_001) is False

    @pytest.mark.asyncio
    async def test_can_afford_property(self):
        """can_afford is False exactly when spent + estimate exceeds the daily limit."""
        rng = random.Random(42)
        for _ in range(50):
            limit = rng.randint(1, 100_000)
            spent = rng.randint(0, 120_000)
            estimate = rng.randint(0, 50_000)

            store = InMemoryStore(clock=self.clock)
            tracker = CostTracker(
                store, BudgetConfig(daily=limit, monthly=10**12), clock=self.clock
            )
            if spent:
                await tracker.record_cost("claude", spent)
            assert await tracker.can_afford(estimate) is (spent + estimate <= limit)

    @pytest.mark.asyncio
    async def test_monthly_limit_enforced(self):
        tracker = CostTracker(
            self.store, BudgetConfig(daily=10_000_000, monthly=1_000_000), clock=self.clock
        )
        await tracker.record_cost("claude", 999_000)
        self.clock.advance(24 * 3600)
        assert await tracker.can_afford(2_000) is False

    @pytest.mark.asyncio
    async def test_new_day_resets_daily_spend(self):
        await self.tracker.record_cost("claude", 1_000_000)
        assert await self.tracker.can_afford(1) is False
        self.clock.advance(24 * 3600)
        assert await self.tracker.can_afford(1) is True

    @pytest.mark.asyncio
    async def test_can_afford_fails_closed(self):
        tracker = CostTracker(FailingStore(), self.config, clock=self.clock)
        assert await tracker.can_afford(0) is False

    @pytest.mark.asyncio
    async def test_record_cost_propagates_store_error(self):
        tracker = CostTracker(FailingStore(), self.config, clock=self.clock)
        with pytest.raises(StoreError):
            await tracker.record_cost("claude", 10)

    @pytest.mark.asyncio
    async def test_corrupt_counter_fails_closed(self):
        await self.store.set(keys.cost_daily(day_bucket(self.clock.now)), "garbage")
        assert await self.tracker.can_afford(1) is False

    @pytest.mark.asyncio
    async def test_budget_status(self):
        await self.tracker.record_cost("claude", 600_000)
        status = await self.tracker.get_budget_status()

        assert status.daily_spent == 600_000
        assert status.daily_remaining == 400_000
        assert status.daily_percent_used == pytest.approx(60.0)
        assert status.alert_level == 0.5
        assert not status.over_budget

    @pytest.mark.asyncio
    async def test_over_budget(self):
        await self.tracker.record_cost("claude", 1_000_000)
        status = await self.tracker.get_budget_status()
        assert status.over_budget
        assert status.daily_remaining == 0
        assert status.alert_level == 0.9

    @pytest.mark.asyncio
    async def test_alerts_raised_once_per_threshold(self, caplog):
        with caplog.at_level(logging.WARNING, logger="ai_automod.core.cost_tracker"):
            await self.tracker.record_cost("claude", 510_000)
            await self.tracker.record_cost("claude", 10_000)
            await self.tracker.record_cost("claude", 300_000)

        alerts = [r.getMessage() for r in caplog.records if "Budget alert" in r.getMessage()]
        assert len(alerts) == 2
        assert "50%" in alerts[0]
        assert "75%" in alerts[1]
