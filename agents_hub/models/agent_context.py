"""Per-request session context shared by every agent in the waiter pipeline."""

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from agents_hub.models.agent_outputs import CartItem, UpsellSuggestion
from agents_hub.models.runtime_config import AgentRuntimeOverrides

UPSELL_AGENT = "upsell"
ALLERGEN_GUARDIAN_AGENT = "allergen_guardian"
WAITER_AGENT = "waiter"
AGENT_TYPES = (UPSELL_AGENT, ALLERGEN_GUARDIAN_AGENT, WAITER_AGENT)


@dataclass(frozen=True)
class MenuItem:
    """One row of the active menu snapshot."""
    id: str
    name: str
    price_cents: int
    currency: str
    description: Optional[str] = None
    allergens: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    is_alcohol: bool = False
    is_available: bool = False
    menu_id: Optional[str] = None


@dataclass
class RetrievalSnapshot:
    """A named knowledge payload handed to agents as grounding."""
    expires_at_ms: int
    payload: str


@dataclass
class AgentSessionContext:
    """Mutable state for one diner request; discarded once the response is sent."""
    location_id: str
    region: str
    language: str
    legal_drinking_age: int
    avoid_alcohol: bool
    currency: str
    menu: Tuple[MenuItem, ...]
    retrieval_ttl_ms: int
    session_id: str = ""  # assigned after the session record exists
    tenant_id: Optional[str] = None
    table_session_id: Optional[str] = None
    user_id: Optional[str] = None
    allergies: List[str] = field(default_factory=list)
    cart: List[CartItem] = field(default_factory=list)
    kitchen_backlog_minutes: Optional[float] = None
    suggestions: List[UpsellSuggestion] = field(default_factory=list)
    retrieval_cache: Dict[str, RetrievalSnapshot] = field(default_factory=dict)
    runtime_overrides: Dict[str, AgentRuntimeOverrides] = field(default_factory=dict)
    active_agent_type: Optional[str] = None

    def menu_index(self) -> Dict[str, MenuItem]:
        return {item.id: item for item in self.menu}

    def find_item(self, item_id: str) -> Optional[MenuItem]:
        for item in self.menu:
            if item.id == item_id:
                return item
        return None

    def fresh_snapshots(self, now_ms: int) -> Dict[str, str]:
        """Payloads of retrieval snapshots that have not expired at ``now_ms``."""
        return {
            name: snapshot.payload
            for name, snapshot in self.retrieval_cache.items()
            if snapshot.expires_at_ms > now_ms
        }

    @contextmanager
    def acting_as(self, agent_type: str) -> Iterator["AgentSessionContext"]:
        """Mark ``agent_type`` as the running agent for the duration of the block."""
        previous = self.active_agent_type
        self.active_agent_type = agent_type
        try:
            yield self
        finally:
            self.active_agent_type = previous
