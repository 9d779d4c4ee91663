"""Allergen and alcohol safety: candidate ranking, guardian filtering and disclaimers."""

from typing import Dict, Iterable, List, Optional, Sequence

from agents_hub.models.agent_context import AgentSessionContext, MenuItem
from agents_hub.models.agent_outputs import AllergenGuardianOutput, BlockedItem, UpsellSuggestion

DESSERT_TAGS = {"dessert", "sweet"}
DRINK_TAGS = {"drink", "beverage", "cocktail"}
SHAREABLE_TAGS = {"shareable", "small_plate"}
SIGNATURE_TAGS = {"signature", "best_seller"}
PLANT_TAGS = {"vegan", "vegetarian"}

UPSELL_GOALS = ("pair", "upsell", "dessert", "drink", "non_alcoholic")
DEFAULT_GOALS = ("upsell",)
MAX_RATIONALE_CHARS = 180

ALL_SUGGESTIONS_REMOVED = "All upsell suggestions were removed because of allergen or policy conflicts."


def _has_tag(item: MenuItem, family: set) -> bool:
    return any(tag.lower() in family for tag in item.tags)


def conflicting_allergens(item: MenuItem, allergies: Iterable[str]) -> List[str]:
    """Allergens on ``item`` that match a declared allergy, case-insensitively."""
    declared = {allergy.lower() for allergy in allergies}
    return [allergen for allergen in item.allergens if allergen.lower() in declared]


def is_eligible(item: MenuItem, context: AgentSessionContext, cart_item_ids: set) -> bool:
    if not item.is_available or item.id in cart_item_ids:
        return False
    if context.avoid_alcohol and item.is_alcohol:
        return False
    return not conflicting_allergens(item, context.allergies)


def score_item(item: MenuItem, goals: Sequence[str]) -> float:
    """Base score is the price in major units plus tag and goal bonuses."""
    score = item.price_cents / 100

    if _has_tag(item, DESSERT_TAGS):
        score += 8 if "dessert" in goals else 3
    if _has_tag(item, DRINK_TAGS):
        if "drink" in goals or ("non_alcoholic" in goals and not item.is_alcohol):
            score += 8
        else:
            score += 2
    if _has_tag(item, SHAREABLE_TAGS):
        score += 2
    if _has_tag(item, SIGNATURE_TAGS):
        score += 6
    if _has_tag(item, PLANT_TAGS):
        score += 1.5 if "pair" in goals else 0.5

    return score


def build_rationale(item: MenuItem) -> str:
    if item.description and item.description.strip():
        return item.description[:MAX_RATIONALE_CHARS]
    if item.tags:
        return f"Highlighted because it features {', '.join(item.tags)}."
    return "Guest favourite add-on."


def suggestion_from_item(item: MenuItem) -> UpsellSuggestion:
    return UpsellSuggestion(
        item_id=item.id,
        name=item.name,
        price_cents=item.price_cents,
        currency=item.currency,
        rationale=build_rationale(item),
        allergens=list(item.allergens),
        tags=list(item.tags),
        is_alcohol=item.is_alcohol,
        citations=[f"menu:{item.id}"],
    )


def pick_top_suggestions(
    context: AgentSessionContext,
    limit: int = 3,
    goals: Optional[Sequence[str]] = None,
) -> List[UpsellSuggestion]:
    """
    Rank eligible menu items for upselling.

    Unavailable items, items already in the cart, alcohol when the guest
    must avoid it and items carrying a declared allergen never qualify.
    Ties keep menu order.
    """
    goals = tuple(goals) if goals else DEFAULT_GOALS
    cart_item_ids = {line.item_id for line in context.cart}

    eligible = [item for item in context.menu if is_eligible(item, context, cart_item_ids)]
    ranked = sorted(eligible, key=lambda item: score_item(item, goals), reverse=True)
    return [suggestion_from_item(item) for item in ranked[:max(limit, 0)]]


def check_allergens(
    context: AgentSessionContext,
    item_ids: Iterable[str],
    explicit_allergens: Optional[Iterable[str]] = None,
) -> Dict[str, object]:
    """Split ``item_ids`` into conflicts and safe items; unknown ids are skipped."""
    allergies = list(explicit_allergens) if explicit_allergens is not None else context.allergies
    menu_index = context.menu_index()

    conflicts = []
    safe = []
    for item_id in item_ids:
        item = menu_index.get(item_id)
        if item is None:
            continue
        overlapping = conflicting_allergens(item, allergies)
        if overlapping:
            conflicts.append({"item_id": item_id, "allergens": overlapping})
        else:
            safe.append({"item_id": item_id})

    return {"conflicts": conflicts, "safe": safe, "citation": "allergens:policy"}


def apply_allergen_filter(
    suggestions: List[UpsellSuggestion], guardian_output: AllergenGuardianOutput
) -> List[UpsellSuggestion]:
    """Remove exactly the blocked ids and nothing else, keeping order."""
    if not guardian_output.blocked:
        return list(suggestions)
    blocked_ids = {entry.item_id for entry in guardian_output.blocked}
    return [suggestion for suggestion in suggestions if suggestion.item_id not in blocked_ids]


def blocked_disclaimers(
    blocked: Iterable[BlockedItem],
    suggestions: Iterable[UpsellSuggestion],
    context: AgentSessionContext,
) -> List[str]:
    """
    One disclaimer per blocked suggestion, naming the conflicting allergens or
    the guardian's stated reason. Blocked ids that were never suggested are ignored.
    """
    suggested_ids = {suggestion.item_id for suggestion in suggestions}
    menu_index = context.menu_index()
    messages = []
    for entry in blocked:
        if entry.item_id not in suggested_ids:
            continue
        item = menu_index.get(entry.item_id)
        name = item.name if item else entry.item_id
        if entry.allergens:
            messages.append(f"{name} withheld because it contains {', '.join(entry.allergens)}.")
        elif entry.reason and entry.reason.strip():
            messages.append(f"{name} withheld: {entry.reason.strip().rstrip('.')}.")
        else:
            messages.append(f"{name} withheld because it contains declared allergen.")
    return messages


def summarise_suggestions(suggestions: Sequence[UpsellSuggestion]) -> str:
    if not suggestions:
        return "No suggestions produced."
    return "; ".join(
        f"{suggestion.name} ({suggestion.price_cents / 100:.2f} {suggestion.currency})"
        for suggestion in suggestions
    )


def summarise_blocked(blocked: Sequence[BlockedItem], context: AgentSessionContext) -> str:
    if not blocked:
        return "No conflicts detected."
    menu_index = context.menu_index()
    parts = []
    for entry in blocked:
        item = menu_index.get(entry.item_id)
        name = item.name if item else entry.item_id
        detail = ", ".join(entry.allergens) if entry.allergens else (entry.reason or "policy conflict")
        parts.append(f"{name}: {detail}")
    return "; ".join(parts)
