"""Definitions of the upsell, allergen guardian and waiter agents."""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from agents_hub.infra.config import config
from agents_hub.infra.error_handler import AgentOutputInvalid
from agents_hub.models.agent_context import (
    ALLERGEN_GUARDIAN_AGENT,
    UPSELL_AGENT,
    WAITER_AGENT,
    AgentSessionContext,
)
from agents_hub.models.agent_outputs import AllergenGuardianOutput, UpsellOutput, WaiterOutput


@dataclass(frozen=True)
class AgentDefinition:
    """Instructions, tools and output schema for one agent role."""
    agent_type: str
    name: str
    model: str
    tools: Tuple[str, ...]
    output_model: Type[BaseModel]
    instructions: Callable[[AgentSessionContext], str]


def upsell_instructions(context: AgentSessionContext) -> str:
    return (
        "Use the available tools to retrieve menu knowledge and propose 2-3 upsell or pairing options. "
        "Never recommend items that conflict with declared allergens or age restrictions, "
        "and always include prices and citation tokens."
    )


def guardian_instructions(context: AgentSessionContext) -> str:
    allergies = ", ".join(context.allergies) or "none declared"
    return (
        f"Validate the proposed upsell suggestions against the guest allergen list ({allergies}). "
        "Flag any conflicts and explain the risk. If an item is blocked, provide a short explanation."
    )


def waiter_instructions(context: AgentSessionContext) -> str:
    lines = [
        f"{index}. {item.name} - {item.price_cents / 100:.2f} {item.currency} ({', '.join(item.citations)})"
        for index, item in enumerate(context.suggestions, start=1)
    ]
    if lines:
        suggestion_block = "Suggested upsells:\n" + "\n".join(lines)
    else:
        suggestion_block = "No upsell suggestions available."
    return (
        "Compose a concise response summarising the top items and why they fit. "
        "Quote prices with currency, reference allergens (or lack thereof), and include citation tokens "
        "so the UI can render source chips. Never surface a suggestion that was filtered out by safety checks.\n"
        f"{suggestion_block}"
    )


UPSELL = AgentDefinition(
    agent_type=UPSELL_AGENT,
    name="Upsell Agent",
    model=config.OPENAI_DEFAULT_MODEL,
    tools=("get_menu", "recommend_items", "check_allergens", "get_kitchen_load"),
    output_model=UpsellOutput,
    instructions=upsell_instructions,
)

ALLERGEN_GUARDIAN = AgentDefinition(
    agent_type=ALLERGEN_GUARDIAN_AGENT,
    name="Allergen Guardian",
    model=config.OPENAI_LOW_COST_MODEL,
    tools=("check_allergens",),
    output_model=AllergenGuardianOutput,
    instructions=guardian_instructions,
)

WAITER = AgentDefinition(
    agent_type=WAITER_AGENT,
    name="Waiter",
    model=config.OPENAI_DEFAULT_MODEL,
    tools=("get_menu", "create_order", "get_kitchen_load", "check_allergens"),
    output_model=WaiterOutput,
    instructions=waiter_instructions,
)


OutputT = TypeVar("OutputT", bound=BaseModel)


def parse_agent_output(agent_type: str, output_model: Type[OutputT], raw: Dict[str, Any]) -> OutputT:
    """Validate raw model output, applying the schema's defaults for omitted lists."""
    try:
        return output_model.model_validate(raw)
    except ValidationError as e:
        issues = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'output'}: {error['msg']}"
            for error in e.errors()
        )
        raise AgentOutputInvalid(agent_type, issues)
