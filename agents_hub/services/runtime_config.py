"""Runtime configuration resolution with a process-wide TTL cache."""

import dataclasses
import logging
import math
from typing import Any, Dict, Optional, Tuple

from agents_hub.infra.config import config
from agents_hub.infra.error_handler import AgentDisabled
from agents_hub.models.agent_context import AgentSessionContext
from agents_hub.models.runtime_config import AgentRuntimeOverrides, AutonomyLevel, RuntimeConfig
from agents_hub.services.context_builder import update_retrieval_ttl

logger = logging.getLogger(__name__)

DEFAULT_RETRIEVAL_TTL_MINUTES = 5.0


def _to_float(value: Any, fallback: float) -> float:
    if value is None:
        return fallback
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return fallback
    return parsed if math.isfinite(parsed) else fallback


class RuntimeConfigResolver:
    """
    Resolves per-tenant, per-agent runtime policy.

    Lookups prefer the tenant row, then the global (tenant-less) row, then
    hard-coded defaults. Results are cached for ``ttl_seconds`` under
    ``<agent_type>:<tenant_id or "global">``. Cached values are immutable
    and replaced wholesale, so concurrent requests that miss together only
    repeat the fetch.
    """

    def __init__(
        self,
        store,
        budget,
        clock,
        ttl_seconds: float = config.RUNTIME_CONFIG_TTL_SECONDS,
        default_session_budget_usd: float = config.SESSION_BUDGET_USD,
        default_daily_budget_usd: float = config.DAILY_BUDGET_USD,
    ):
        self.store = store
        self.budget = budget
        self.clock = clock
        self.ttl_ms = int(ttl_seconds * 1000)
        self.default_session_budget_usd = default_session_budget_usd
        self.default_daily_budget_usd = default_daily_budget_usd
        self._cache: Dict[str, Tuple[int, RuntimeConfig]] = {}

    @staticmethod
    def cache_key(agent_type: str, tenant_id: Optional[str]) -> str:
        return f"{agent_type}:{tenant_id or 'global'}"

    def defaults(self) -> RuntimeConfig:
        return RuntimeConfig(
            enabled=True,
            session_budget_usd=self.default_session_budget_usd,
            daily_budget_usd=self.default_daily_budget_usd,
            retrieval_ttl_minutes=DEFAULT_RETRIEVAL_TTL_MINUTES,
        )

    def _from_row(self, row: Dict[str, Any]) -> RuntimeConfig:
        allowlist = row.get("tool_allowlist") or []
        return RuntimeConfig(
            enabled=bool(row.get("enabled", True)),
            session_budget_usd=_to_float(row.get("session_budget_usd"), self.default_session_budget_usd),
            daily_budget_usd=_to_float(row.get("daily_budget_usd"), self.default_daily_budget_usd),
            instructions=row.get("instructions") or "",
            tool_allowlist=frozenset(str(name) for name in allowlist),
            autonomy_level=AutonomyLevel.parse(row.get("autonomy_level")),
            retrieval_ttl_minutes=_to_float(row.get("retrieval_ttl_minutes"), DEFAULT_RETRIEVAL_TTL_MINUTES),
            experiment_flag=row.get("experiment_flag"),
            sync_pending=bool(row.get("sync_pending")),
            config_id=str(row["id"]) if row.get("id") is not None else None,
            tenant_id=str(row["tenant_id"]) if row.get("tenant_id") is not None else None,
        )

    def _store_in_cache(self, key: str, value: RuntimeConfig, now_ms: int) -> None:
        self._cache[key] = (now_ms + self.ttl_ms, value)

    async def resolve(self, agent_type: str, tenant_id: Optional[str] = None) -> RuntimeConfig:
        key = self.cache_key(agent_type, tenant_id)
        now_ms = self.clock.now_ms()
        cached = self._cache.get(key)
        if cached and cached[0] > now_ms:
            return cached[1]

        row = await self.store.fetch_runtime_config_row(agent_type, tenant_id)
        if row is None and tenant_id:
            # Fall back to the global row and remember it under the tenant key
            value = await self.resolve(agent_type, None)
        elif row is None:
            value = self.defaults()
        else:
            value = self._from_row(row)

        self._store_in_cache(key, value, now_ms)
        return value

    async def ensure_agent_enabled(self, agent_type: str, tenant_id: Optional[str] = None) -> RuntimeConfig:
        """
        Resolve the config and fail fast when the agent cannot run.

        Raises:
            AgentDisabled: the agent is switched off for this tenant
            DailyBudgetExceeded: today's spend already reached the daily ceiling
        """
        runtime = await self.resolve(agent_type, tenant_id)
        if not runtime.enabled:
            raise AgentDisabled(agent_type)

        await self.budget.assert_daily_budget_available(agent_type, tenant_id, runtime)

        if runtime.sync_pending:
            runtime = await self._acknowledge(runtime)
        return runtime

    async def _acknowledge(self, runtime: RuntimeConfig) -> RuntimeConfig:
        """Tell the store the pending edit was picked up; never raises."""
        if runtime.config_id:
            try:
                await self.store.acknowledge_runtime_config(runtime.config_id)
            except Exception as e:
                logger.warning(
                    "Failed to acknowledge runtime config",
                    extra={"config_id": runtime.config_id, "error": str(e)}
                )

        acknowledged = dataclasses.replace(runtime, sync_pending=False)
        for key, (expires_at_ms, value) in list(self._cache.items()):
            if value is runtime or (runtime.config_id and value.config_id == runtime.config_id):
                self._cache[key] = (expires_at_ms, acknowledged)
        return acknowledged

    def apply_override(self, context: AgentSessionContext, agent_type: str, runtime: RuntimeConfig) -> None:
        """Copy the agent's policy onto the request and tighten retrieval freshness."""
        context.runtime_overrides[agent_type] = AgentRuntimeOverrides.from_config(runtime)
        update_retrieval_ttl(context, runtime.retrieval_ttl_minutes, self.clock.now_ms())
