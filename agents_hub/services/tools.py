"""Tools exposed to the waiter agents and their execution engine."""

import hashlib
import json
import logging
import math
from dataclasses import dataclass
from datetime import timezone
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Sequence, Type

from pydantic import BaseModel, Field

from agents_hub.infra.error_handler import ToolDisabled
from agents_hub.infra.metrics import tool_calls_total
from agents_hub.models.agent_context import AgentSessionContext
from agents_hub.models.agent_outputs import CartItem
from agents_hub.services.safety import check_allergens, pick_top_suggestions

logger = logging.getLogger(__name__)

ORDER_PROPOSAL_EVENT = "agent_order_proposal"
OPEN_ORDER_PERCENTILE = 0.9


class GetMenuArgs(BaseModel):
    limit: int = Field(default=40, ge=1, le=100, description="Maximum items to return")


class CheckAllergensArgs(BaseModel):
    item_ids: List[str] = Field(..., description="Menu item ids to check")
    explicit_allergens: Optional[List[str]] = Field(
        default=None,
        description="Allergens to check instead of the guest's declared list"
    )


class RecommendItemsArgs(BaseModel):
    goals: List[Literal["pair", "upsell", "dessert", "drink", "non_alcoholic"]] = Field(
        default_factory=lambda: ["upsell"],
        description="What the suggestions should favour"
    )
    limit: int = Field(default=3, ge=1, le=3, description="Number of suggestions, at most 3")


class CreateOrderArgs(BaseModel):
    cart: List[CartItem] = Field(..., min_length=1, description="Items to propose")
    notes: Optional[str] = Field(default=None, description="Notes for staff")


class GetKitchenLoadArgs(BaseModel):
    pass


@dataclass(frozen=True)
class AgentTool:
    """A tool the model may call: name, description and argument schema."""
    name: str
    description: str
    args_model: Type[BaseModel]


TOOLS: Dict[str, AgentTool] = {
    tool.name: tool for tool in (
        AgentTool(
            name="get_menu",
            description="List available menu items for the active location including allergens and pricing.",
            args_model=GetMenuArgs,
        ),
        AgentTool(
            name="check_allergens",
            description="Verify whether the provided items conflict with the declared allergen list.",
            args_model=CheckAllergensArgs,
        ),
        AgentTool(
            name="recommend_items",
            description=(
                "Return 2-3 upsell suggestions that fit the guest's context. "
                "Avoid allergens and age-restricted items when disallowed."
            ),
            args_model=RecommendItemsArgs,
        ),
        AgentTool(
            name="create_order",
            description=(
                "Record a draft order proposal for staff review. "
                "This does not charge the guest and is used for one-tap approvals."
            ),
            args_model=CreateOrderArgs,
        ),
        AgentTool(
            name="get_kitchen_load",
            description="Return a lightweight snapshot of kitchen backlog based on open orders for the active location.",
            args_model=GetKitchenLoadArgs,
        ),
    )
}


def build_openai_tools(tool_names: Sequence[str]) -> List[Dict[str, Any]]:
    """
    Convert tool names to the OpenAI function-calling schema.

    Args:
        tool_names: Names from TOOLS

    Returns:
        List of OpenAI tool dicts
    """
    openai_tools = []
    for name in tool_names:
        tool = TOOLS[name]
        openai_tools.append({
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.args_model.model_json_schema(),
            }
        })
    return openai_tools


def assert_tool_allowed(context: AgentSessionContext, tool_name: str, agent_type: Optional[str]) -> None:
    """Raise ToolDisabled when the agent's runtime allowlist excludes ``tool_name``."""
    if not agent_type:
        return
    overrides = context.runtime_overrides.get(agent_type)
    if overrides is None or overrides.allows_tool(tool_name):
        return
    raise ToolDisabled(tool_name, agent_type)


def order_idempotency_key(session_id: str, cart: Sequence[CartItem], notes: Optional[str]) -> str:
    """Stable key for an order proposal so a retried request records it once."""
    canonical = json.dumps(
        {
            "session_id": session_id,
            "cart": sorted((line.item_id, line.quantity) for line in cart),
            "notes": (notes or "").strip(),
        },
        sort_keys=True,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def percentile_wait_minutes(waits: List[float], percentile: float = OPEN_ORDER_PERCENTILE) -> float:
    ordered = sorted(waits)
    index = min(math.floor(len(ordered) * percentile), len(ordered) - 1)
    return round(ordered[index], 2)


class ToolExecutor:
    """Validates arguments, enforces the allowlist and dispatches tool calls."""

    def __init__(self, store, clock):
        self.store = store
        self.clock = clock
        self._handlers: Dict[str, Callable[[BaseModel, AgentSessionContext], Awaitable[Dict[str, Any]]]] = {
            "get_menu": self._get_menu,
            "check_allergens": self._check_allergens,
            "recommend_items": self._recommend_items,
            "create_order": self._create_order,
            "get_kitchen_load": self._get_kitchen_load,
        }

    async def execute_tool(
        self,
        name: str,
        args: Dict[str, Any],
        context: AgentSessionContext,
        agent_type: Optional[str],
    ) -> Dict[str, Any]:
        """
        Run one tool call on behalf of ``agent_type``.

        Raises:
            ToolDisabled: the agent's allowlist excludes the tool
            KeyError: unknown tool name
            pydantic.ValidationError: arguments do not match the tool schema
        """
        tool = TOOLS.get(name)
        if tool is None:
            raise KeyError(f"Unknown tool: {name}")

        try:
            assert_tool_allowed(context, name, agent_type)
        except ToolDisabled:
            tool_calls_total.labels(tool_name=name, status="disabled").inc()
            logger.warning("Tool call rejected", extra={"tool_name": name, "agent_type": agent_type})
            raise

        parsed = tool.args_model.model_validate(args or {})
        try:
            result = await self._handlers[name](parsed, context)
        except Exception:
            tool_calls_total.labels(tool_name=name, status="failure").inc()
            raise
        tool_calls_total.labels(tool_name=name, status="success").inc()
        return result

    async def _get_menu(self, args: GetMenuArgs, context: AgentSessionContext) -> Dict[str, Any]:
        items = [
            {
                "id": item.id,
                "name": item.name,
                "description": item.description,
                "price_cents": item.price_cents,
                "currency": item.currency,
                "allergens": list(item.allergens),
                "tags": list(item.tags),
                "is_alcohol": item.is_alcohol,
                "citation": f"menu:{item.id}",
            }
            for item in context.menu[:args.limit]
        ]
        return {"items": items}

    async def _check_allergens(self, args: CheckAllergensArgs, context: AgentSessionContext) -> Dict[str, Any]:
        return check_allergens(context, args.item_ids, args.explicit_allergens)

    async def _recommend_items(self, args: RecommendItemsArgs, context: AgentSessionContext) -> Dict[str, Any]:
        suggestions = pick_top_suggestions(context, args.limit, args.goals)
        return {
            "suggestions": [suggestion.model_dump(exclude={"impression_id"}) for suggestion in suggestions],
            "source": "menu",
            "generated_at": self.clock.utcnow().isoformat(),
        }

    async def _create_order(self, args: CreateOrderArgs, context: AgentSessionContext) -> Dict[str, Any]:
        if not context.location_id or not context.tenant_id:
            raise ValueError("Cannot create order proposal without tenant and location identifiers.")

        key = order_idempotency_key(context.session_id, args.cart, args.notes)
        if await self.store.event_exists(ORDER_PROPOSAL_EVENT, key):
            logger.info("Duplicate order proposal skipped", extra={"session_id": context.session_id})
            return {"status": "recorded", "proposal_ref": context.session_id, "duplicate": True}

        await self.store.insert_event(
            event_type=ORDER_PROPOSAL_EVENT,
            tenant_id=context.tenant_id,
            location_id=context.location_id,
            table_session_id=context.table_session_id,
            payload={
                "cart": [line.model_dump() for line in args.cart],
                "notes": args.notes,
                "session_id": context.session_id,
                "language": context.language,
                "idempotency_key": key,
            },
        )
        return {"status": "recorded", "proposal_ref": context.session_id}

    async def _get_kitchen_load(self, args: GetKitchenLoadArgs, context: AgentSessionContext) -> Dict[str, Any]:
        if not context.location_id:
            return {"backlog_minutes": 0, "open_orders": 0}

        timestamps = await self.store.list_open_order_timestamps(context.location_id)
        now = self.clock.utcnow()
        waits = []
        for created_at in timestamps:
            if created_at is None:
                continue
            if created_at.tzinfo is None:
                created_at = created_at.replace(tzinfo=timezone.utc)
            minutes = (now - created_at).total_seconds() / 60
            if math.isfinite(minutes) and minutes >= 0:
                waits.append(minutes)

        if not waits:
            return {"backlog_minutes": 0, "open_orders": 0}

        backlog = percentile_wait_minutes(waits)
        context.kitchen_backlog_minutes = backlog
        return {"backlog_minutes": backlog, "open_orders": len(waits)}
