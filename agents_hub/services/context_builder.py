"""Builds the per-request AgentSessionContext from diner metadata."""

import json
import logging
import math
from typing import Any, Dict, Iterable, List, Optional

from agents_hub.infra.config import config
from agents_hub.infra.error_handler import InvalidRequest, NoActiveMenu, NotFound
from agents_hub.models.agent_context import AgentSessionContext, MenuItem, RetrievalSnapshot
from agents_hub.models.agent_outputs import CartItem

logger = logging.getLogger(__name__)

EU_REGION = "EU"
MIN_RETRIEVAL_TTL_MS = 60_000


def _as_tuple(values: Optional[Iterable[Any]]) -> tuple:
    if not values:
        return ()
    return tuple(str(value) for value in values)


def _menu_item_from_row(row: Dict[str, Any]) -> MenuItem:
    price = row.get("price_cents")
    return MenuItem(
        id=str(row["id"]),
        name=row.get("name") or "",
        description=row.get("description"),
        price_cents=int(price) if price is not None else 0,
        currency=row.get("currency") or "",
        allergens=_as_tuple(row.get("allergens")),
        tags=_as_tuple(row.get("tags")),
        is_alcohol=bool(row.get("is_alcohol")),
        is_available=bool(row.get("is_available")),
        menu_id=str(row["menu_id"]) if row.get("menu_id") else None,
    )


def normalise_allergies(allergies: Optional[Iterable[str]]) -> List[str]:
    """Trim, lower-case and de-duplicate declared allergies, keeping first-seen order."""
    seen: List[str] = []
    for value in allergies or []:
        cleaned = (value or "").strip().lower()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


def legal_drinking_age_for(region: str) -> int:
    return 17 if (region or "").upper() == EU_REGION else 18


async def _resolve_table_anchors(store, table_session_id: str) -> Dict[str, str]:
    """Walk table session -> table -> location to find the location and tenant."""
    table_session = await store.get_table_session(table_session_id)
    if not table_session:
        raise NotFound("Table session not found")

    table = await store.get_table(str(table_session["table_id"]))
    if not table:
        raise NotFound("Table metadata missing")

    location = await store.get_location(str(table["location_id"]))
    if not location:
        raise NotFound("Location not found for table session")

    return {"location_id": str(location["id"]), "tenant_id": str(location["tenant_id"])}


def _seed_retrieval_cache(
    menu: Iterable[MenuItem],
    allergies: List[str],
    avoid_alcohol: bool,
    legal_drinking_age: int,
    expires_at_ms: int,
) -> Dict[str, RetrievalSnapshot]:
    menu_payload = json.dumps([
        {
            "id": item.id,
            "name": item.name,
            "price_cents": item.price_cents,
            "currency": item.currency,
            "citations": [f"menu:{item.id}"],
        }
        for item in menu
    ])
    allergens_payload = json.dumps({"declared": allergies, "source": "allergens:policy"})
    if avoid_alcohol:
        age_gate = f"Do not suggest alcoholic items. Legal drinking age is {legal_drinking_age}+."
    else:
        age_gate = f"Alcohol suggestions permitted when appropriate. Legal drinking age is {legal_drinking_age}+."
    policies_payload = json.dumps({
        "age_gate": age_gate,
        "price_transparency": "Always state totals with currency.",
        "source": "policies:ops",
    })

    return {
        "menu": RetrievalSnapshot(expires_at_ms=expires_at_ms, payload=menu_payload),
        "allergens": RetrievalSnapshot(expires_at_ms=expires_at_ms, payload=allergens_payload),
        "policies": RetrievalSnapshot(expires_at_ms=expires_at_ms, payload=policies_payload),
    }


async def build_agent_context(
    store,
    clock,
    location_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
    table_session_id: Optional[str] = None,
    user_id: Optional[str] = None,
    language: Optional[str] = None,
    allergies: Optional[List[str]] = None,
    cart: Optional[List[CartItem]] = None,
    age_verified: Optional[bool] = None,
    freshness_ms: int = config.RETRIEVAL_FRESHNESS_MS,
) -> AgentSessionContext:
    """
    Resolve identifiers, load the active menu and derive policy for one request.

    The returned context has an empty ``session_id`` and no suggestions; the
    caller assigns the session once the session record exists.

    Raises:
        InvalidRequest: neither a location nor a table session was supplied
        NotFound: a table session, table or location row is missing
        NoActiveMenu: the location has no active menu
    """
    if not location_id and not table_session_id:
        raise InvalidRequest("Location or table session required to run agent")

    if table_session_id and (not location_id or not tenant_id):
        anchors = await _resolve_table_anchors(store, table_session_id)
        location_id = location_id or anchors["location_id"]
        tenant_id = tenant_id or anchors["tenant_id"]

    location = await store.get_location(location_id)
    if not location:
        raise NotFound("Location not found")
    if not tenant_id and location.get("tenant_id"):
        tenant_id = str(location["tenant_id"])

    menu_id = await store.get_active_menu_id(str(location["id"]))
    if not menu_id:
        raise NoActiveMenu(str(location["id"]))
    menu = tuple(_menu_item_from_row(row) for row in await store.list_menu_items(menu_id))

    region = (location.get("region") or config.REGION).upper()
    normalised_allergies = normalise_allergies(allergies)
    legal_drinking_age = legal_drinking_age_for(region)
    avoid_alcohol = age_verified is not True

    retrieval_cache = _seed_retrieval_cache(
        menu,
        normalised_allergies,
        avoid_alcohol,
        legal_drinking_age,
        clock.now_ms() + freshness_ms,
    )

    logger.debug(
        "Built agent context",
        extra={"location_id": str(location["id"]), "tenant_id": tenant_id, "menu_items": len(menu)}
    )

    return AgentSessionContext(
        location_id=str(location["id"]),
        tenant_id=tenant_id,
        table_session_id=table_session_id,
        user_id=user_id,
        region=region,
        language=language or "English",
        legal_drinking_age=legal_drinking_age,
        avoid_alcohol=avoid_alcohol,
        currency=location.get("currency") or "",
        allergies=normalised_allergies,
        cart=list(cart or []),
        menu=menu,
        retrieval_cache=retrieval_cache,
        retrieval_ttl_ms=freshness_ms,
    )


def update_retrieval_ttl(context: AgentSessionContext, minutes: Optional[float], now_ms: int) -> None:
    """
    Tighten the context-wide retrieval TTL and re-stamp every snapshot.

    Non-positive or non-finite minutes keep the current TTL. The TTL never
    drops below one minute and never grows.
    """
    if minutes is None or not math.isfinite(minutes) or minutes <= 0:
        minutes = context.retrieval_ttl_ms / 60_000
    ttl_ms = max(MIN_RETRIEVAL_TTL_MS, math.floor(minutes * 60_000))
    context.retrieval_ttl_ms = min(context.retrieval_ttl_ms, ttl_ms)

    new_expiry = now_ms + context.retrieval_ttl_ms
    for snapshot in context.retrieval_cache.values():
        snapshot.expires_at_ms = new_expiry
