from .agent_context import (
    AgentSessionContext,
    MenuItem,
    RetrievalSnapshot,
    UPSELL_AGENT,
    ALLERGEN_GUARDIAN_AGENT,
    WAITER_AGENT,
    AGENT_TYPES,
)
from .agent_outputs import (
    CartItem,
    UpsellSuggestion,
    UpsellOutput,
    BlockedItem,
    SafeItem,
    AllergenGuardianOutput,
    WaiterUpsellReference,
    WaiterOutput,
    TokenUsage,
)
from .runtime_config import AutonomyLevel, RuntimeConfig, AgentRuntimeOverrides

__all__ = [
    "AgentSessionContext",
    "MenuItem",
    "RetrievalSnapshot",
    "UPSELL_AGENT",
    "ALLERGEN_GUARDIAN_AGENT",
    "WAITER_AGENT",
    "AGENT_TYPES",
    "CartItem",
    "UpsellSuggestion",
    "UpsellOutput",
    "BlockedItem",
    "SafeItem",
    "AllergenGuardianOutput",
    "WaiterUpsellReference",
    "WaiterOutput",
    "TokenUsage",
    "AutonomyLevel",
    "RuntimeConfig",
    "AgentRuntimeOverrides",
]
