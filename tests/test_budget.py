"""Tests for session and daily budget enforcement."""

import pytest

from agents_hub.infra.error_handler import BudgetExceeded, DailyBudgetExceeded, SessionBudgetExceeded
from agents_hub.models.agent_outputs import TokenUsage
from agents_hub.models.runtime_config import RuntimeConfig
from agents_hub.services.budget import BudgetEnforcer
from agents_hub.services.cost_calculator import estimate_cost_usd
from conftest import TENANT_ID


@pytest.fixture
def enforcer(store, clock):
    return BudgetEnforcer(store, clock)


class TestAssertBudgetsAfterRun:
    """Tests for BudgetEnforcer.assert_budgets_after_run."""

    @pytest.mark.asyncio
    async def test_within_budgets(self, enforcer):
        runtime = RuntimeConfig(session_budget_usd=0.5, daily_budget_usd=10)

        await enforcer.assert_budgets_after_run("upsell", TENANT_ID, runtime, 0.2)

    @pytest.mark.asyncio
    async def test_session_budget_exceeded(self, enforcer):
        runtime = RuntimeConfig(session_budget_usd=0.5, daily_budget_usd=10)

        with pytest.raises(SessionBudgetExceeded) as exc_info:
            await enforcer.assert_budgets_after_run("upsell", TENANT_ID, runtime, 0.51)

        assert exc_info.value.status_code == 429
        assert "per-session budget" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_session_budget_at_limit_is_allowed(self, enforcer):
        runtime = RuntimeConfig(session_budget_usd=0.5, daily_budget_usd=10)

        await enforcer.assert_budgets_after_run("upsell", TENANT_ID, runtime, 0.5)

    @pytest.mark.asyncio
    async def test_daily_budget_exceeded_by_run(self, enforcer, store):
        store.daily_spend[("waiter", TENANT_ID)] = 9.9
        runtime = RuntimeConfig(session_budget_usd=0.5, daily_budget_usd=10)

        with pytest.raises(DailyBudgetExceeded) as exc_info:
            await enforcer.assert_budgets_after_run("waiter", TENANT_ID, runtime, 0.2)

        assert "would exceed the daily budget" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_session_checked_before_daily(self, enforcer, store):
        store.daily_spend[("waiter", TENANT_ID)] = 100.0
        runtime = RuntimeConfig(session_budget_usd=0.1, daily_budget_usd=10)

        with pytest.raises(SessionBudgetExceeded):
            await enforcer.assert_budgets_after_run("waiter", TENANT_ID, runtime, 0.2)

    @pytest.mark.asyncio
    async def test_zero_budgets_disable_checks(self, enforcer, store):
        store.daily_spend[("waiter", TENANT_ID)] = 1000.0
        runtime = RuntimeConfig(session_budget_usd=0, daily_budget_usd=0)

        await enforcer.assert_budgets_after_run("waiter", TENANT_ID, runtime, 25.0)

        assert store.spend_queries == []

    @pytest.mark.asyncio
    async def test_passing_cost_implies_smaller_costs_pass(self, enforcer, store):
        store.daily_spend[("waiter", TENANT_ID)] = 9.5
        runtime = RuntimeConfig(session_budget_usd=0.4, daily_budget_usd=10)
        costs = [0.0, 0.05, 0.1, 0.25, 0.39, 0.4, 0.41, 0.6]

        passing = []
        for cost in costs:
            try:
                await enforcer.assert_budgets_after_run("waiter", TENANT_ID, runtime, cost)
            except BudgetExceeded:
                continue
            passing.append(cost)

        assert passing == [0.0, 0.05, 0.1, 0.25, 0.39, 0.4]

    @pytest.mark.asyncio
    async def test_daily_window_starts_at_utc_midnight(self, enforcer, store, clock):
        runtime = RuntimeConfig(session_budget_usd=1, daily_budget_usd=10)

        await enforcer.assert_budgets_after_run("waiter", TENANT_ID, runtime, 0.1)

        _, _, since = store.spend_queries[0]
        assert since == clock.start_of_day_utc()
        assert since.hour == 0 and since.minute == 0


class TestAssertDailyBudgetAvailable:
    @pytest.mark.asyncio
    async def test_spend_below_ceiling(self, enforcer, store):
        store.daily_spend[("upsell", TENANT_ID)] = 4.99

        await enforcer.assert_daily_budget_available("upsell", TENANT_ID, RuntimeConfig(daily_budget_usd=5))

    @pytest.mark.asyncio
    async def test_spend_at_ceiling_rejected(self, enforcer, store):
        store.daily_spend[("upsell", TENANT_ID)] = 5.0

        with pytest.raises(BudgetExceeded):
            await enforcer.assert_daily_budget_available("upsell", TENANT_ID, RuntimeConfig(daily_budget_usd=5))


class TestEstimateCost:
    def test_known_model(self):
        usage = TokenUsage(input_tokens=1_000_000, output_tokens=1_000_000)

        assert estimate_cost_usd("gpt-4.1", usage) == 10.0

    def test_cheap_model(self):
        usage = TokenUsage(input_tokens=1000, output_tokens=0)

        assert estimate_cost_usd("gpt-4o-mini", usage) == pytest.approx(0.00015)

    def test_unknown_model_billed_at_default_rate(self):
        usage = TokenUsage(input_tokens=1_000_000, output_tokens=0)

        assert estimate_cost_usd("some-new-model", usage) == 2.5

    def test_no_usage_costs_nothing(self):
        assert estimate_cost_usd("gpt-4.1", None) == 0.0
