"""Session and daily spend guardrails for agent runs."""

import logging
from typing import Optional

from agents_hub.infra.error_handler import DailyBudgetExceeded, SessionBudgetExceeded
from agents_hub.infra.metrics import budget_rejections_total
from agents_hub.models.runtime_config import RuntimeConfig

logger = logging.getLogger(__name__)


class BudgetEnforcer:
    """Checks agent spend against the budgets of a resolved runtime config."""

    def __init__(self, store, clock):
        self.store = store
        self.clock = clock

    async def daily_spend(self, agent_type: str, tenant_id: Optional[str]) -> float:
        """Total recorded cost for ``agent_type`` since UTC midnight."""
        return await self.store.get_daily_spend(agent_type, tenant_id, self.clock.start_of_day_utc())

    async def assert_daily_budget_available(
        self, agent_type: str, tenant_id: Optional[str], runtime: RuntimeConfig
    ) -> None:
        """Fail before a run when today's spend already reached the ceiling."""
        if runtime.daily_budget_usd <= 0:
            return
        spent = await self.daily_spend(agent_type, tenant_id)
        if spent >= runtime.daily_budget_usd:
            budget_rejections_total.labels(agent_type=agent_type, kind="daily").inc()
            logger.warning(
                "Daily budget exhausted",
                extra={"agent_type": agent_type, "tenant_id": tenant_id, "spent_usd": spent}
            )
            raise DailyBudgetExceeded(agent_type, runtime.daily_budget_usd, exhausted=True)

    async def assert_budgets_after_run(
        self,
        agent_type: str,
        tenant_id: Optional[str],
        runtime: RuntimeConfig,
        cost_usd: float,
    ) -> None:
        """
        Fail when a finished run broke the session budget or would push today's
        spend past the daily budget. A budget of zero disables its check.
        """
        if runtime.session_budget_usd > 0 and cost_usd > runtime.session_budget_usd:
            budget_rejections_total.labels(agent_type=agent_type, kind="session").inc()
            raise SessionBudgetExceeded(agent_type, runtime.session_budget_usd)

        if runtime.daily_budget_usd > 0:
            spent = await self.daily_spend(agent_type, tenant_id)
            if spent + cost_usd > runtime.daily_budget_usd:
                budget_rejections_total.labels(agent_type=agent_type, kind="daily").inc()
                raise DailyBudgetExceeded(agent_type, runtime.daily_budget_usd)
