"""Per-tenant, per-agent operational policy."""

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional


class AutonomyLevel(str, Enum):
    """How much an agent may act without human approval (L0 = none)."""
    L0 = "L0"
    L1 = "L1"
    L2 = "L2"
    L3 = "L3"

    @property
    def rank(self) -> int:
        return int(self.value[1])

    @classmethod
    def parse(cls, value: Optional[str]) -> "AutonomyLevel":
        if not value:
            return cls.L0
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.L0


@dataclass(frozen=True)
class RuntimeConfig:
    """Immutable runtime policy snapshot; replaced wholesale on refresh."""
    enabled: bool = True
    session_budget_usd: float = 0.0
    daily_budget_usd: float = 0.0
    instructions: str = ""
    tool_allowlist: FrozenSet[str] = field(default_factory=frozenset)
    autonomy_level: AutonomyLevel = AutonomyLevel.L0
    retrieval_ttl_minutes: float = 5.0
    experiment_flag: Optional[str] = None
    sync_pending: bool = False
    config_id: Optional[str] = None  # None for hard-coded defaults
    tenant_id: Optional[str] = None  # None for the global row


@dataclass(frozen=True)
class AgentRuntimeOverrides:
    """The slice of a RuntimeConfig applied to one agent for one request."""
    instructions: str = ""
    tool_allowlist: FrozenSet[str] = field(default_factory=frozenset)
    autonomy_level: AutonomyLevel = AutonomyLevel.L0
    retrieval_ttl_minutes: float = 5.0
    experiment_flag: Optional[str] = None

    @classmethod
    def from_config(cls, runtime: RuntimeConfig) -> "AgentRuntimeOverrides":
        return cls(
            instructions=runtime.instructions,
            tool_allowlist=runtime.tool_allowlist,
            autonomy_level=runtime.autonomy_level,
            retrieval_ttl_minutes=runtime.retrieval_ttl_minutes,
            experiment_flag=runtime.experiment_flag,
        )

    def allows_tool(self, tool_name: str) -> bool:
        # An empty allowlist leaves the agent unrestricted
        return not self.tool_allowlist or tool_name in self.tool_allowlist
