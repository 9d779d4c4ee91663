"""Pytest configuration and fixtures."""

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from dotenv import load_dotenv

# Load test environment variables
load_dotenv()

# Set test environment
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")

from agents_hub.models.agent_context import AgentSessionContext, MenuItem, RetrievalSnapshot  # noqa: E402


TENANT_ID = "11111111-1111-4111-8111-111111111111"
LOCATION_ID = "22222222-2222-4222-8222-222222222222"
TABLE_ID = "33333333-3333-4333-8333-333333333333"
TABLE_SESSION_ID = "44444444-4444-4444-8444-444444444444"
MENU_ID = "55555555-5555-4555-8555-555555555555"
SESSION_ID = "66666666-6666-4666-8666-666666666666"

TILAPIA_ID = "a0000000-0000-4000-8000-000000000001"
NUT_TART_ID = "a0000000-0000-4000-8000-000000000002"
SORBET_ID = "a0000000-0000-4000-8000-000000000003"
LEMONADE_ID = "a0000000-0000-4000-8000-000000000004"
WINE_ID = "a0000000-0000-4000-8000-000000000005"
CALAMARI_ID = "a0000000-0000-4000-8000-000000000006"
SOLD_OUT_ID = "a0000000-0000-4000-8000-000000000007"

MENU_ROWS: List[Dict[str, Any]] = [
    {
        "id": TILAPIA_ID, "name": "Grilled Tilapia", "description": "Lake tilapia with lemon butter.",
        "price_cents": 1800, "currency": "EUR", "allergens": ["fish"], "tags": ["main"],
        "is_alcohol": False, "is_available": True, "menu_id": MENU_ID,
    },
    {
        "id": NUT_TART_ID, "name": "Hazelnut Tart", "description": "Warm tart with toasted hazelnuts.",
        "price_cents": 1200, "currency": "EUR", "allergens": ["Nuts", "gluten"], "tags": ["dessert", "signature"],
        "is_alcohol": False, "is_available": True, "menu_id": MENU_ID,
    },
    {
        "id": SORBET_ID, "name": "Mango Sorbet", "description": None,
        "price_cents": 700, "currency": "EUR", "allergens": [], "tags": ["dessert", "vegan"],
        "is_alcohol": False, "is_available": True, "menu_id": MENU_ID,
    },
    {
        "id": LEMONADE_ID, "name": "Ginger Lemonade", "description": "House-pressed lemonade.",
        "price_cents": 450, "currency": "EUR", "allergens": None, "tags": ["drink"],
        "is_alcohol": False, "is_available": True, "menu_id": MENU_ID,
    },
    {
        "id": WINE_ID, "name": "Chenin Blanc", "description": "Crisp white wine.",
        "price_cents": 900, "currency": "EUR", "allergens": ["sulphites"], "tags": ["drink"],
        "is_alcohol": True, "is_available": True, "menu_id": MENU_ID,
    },
    {
        "id": CALAMARI_ID, "name": "Calamari", "description": "",
        "price_cents": 1100, "currency": "EUR", "allergens": ["shellfish"], "tags": ["shareable", "small_plate"],
        "is_alcohol": False, "is_available": True, "menu_id": MENU_ID,
    },
    {
        "id": SOLD_OUT_ID, "name": "Tomahawk Steak", "description": "Sharing steak.",
        "price_cents": 6500, "currency": "EUR", "allergens": [], "tags": ["signature"],
        "is_alcohol": False, "is_available": False, "menu_id": MENU_ID,
    },
]


class FakeClock:
    """Deterministic clock; ``advance`` moves time forward."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)

    def now_ms(self) -> int:
        return int(self.now.timestamp() * 1000)

    def utcnow(self) -> datetime:
        return self.now

    def start_of_day_utc(self) -> datetime:
        return self.now.replace(hour=0, minute=0, second=0, microsecond=0)

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeStore:
    """In-memory stand-in for SQLStore recording every write."""

    def __init__(self):
        self.table_sessions: Dict[str, Dict[str, Any]] = {}
        self.tables: Dict[str, Dict[str, Any]] = {}
        self.locations: Dict[str, Dict[str, Any]] = {}
        self.active_menus: Dict[str, str] = {}
        self.menu_items: Dict[str, List[Dict[str, Any]]] = {}
        self.runtime_rows: Dict[tuple, Dict[str, Any]] = {}
        self.runtime_fetches: List[tuple] = []
        self.acknowledged: List[str] = []
        self.ack_error: Optional[Exception] = None
        self.daily_spend: Dict[tuple, float] = {}
        self.spend_queries: List[tuple] = []
        self.sessions: List[Dict[str, Any]] = []
        self.agent_events: List[Dict[str, Any]] = []
        self.impressions: List[Dict[str, Any]] = []
        self.impression_error: Optional[Exception] = None
        self.events: List[Dict[str, Any]] = []
        self.open_orders: Dict[str, List[datetime]] = {}

    # Context lookups
    async def get_table_session(self, table_session_id):
        return self.table_sessions.get(table_session_id)

    async def get_table(self, table_id):
        return self.tables.get(table_id)

    async def get_location(self, location_id):
        return self.locations.get(location_id)

    async def get_active_menu_id(self, location_id):
        return self.active_menus.get(location_id)

    async def list_menu_items(self, menu_id):
        return [dict(row) for row in self.menu_items.get(menu_id, [])]

    # Runtime configuration
    async def fetch_runtime_config_row(self, agent_type, tenant_id):
        self.runtime_fetches.append((agent_type, tenant_id))
        row = self.runtime_rows.get((agent_type, tenant_id))
        return dict(row) if row else None

    async def acknowledge_runtime_config(self, config_id):
        if self.ack_error:
            raise self.ack_error
        self.acknowledged.append(config_id)

    # Telemetry
    async def get_daily_spend(self, agent_type, tenant_id, since):
        self.spend_queries.append((agent_type, tenant_id, since))
        return self.daily_spend.get((agent_type, tenant_id), 0.0)

    async def create_agent_session(self, agent_type, tenant_id, location_id, table_session_id, user_id, context):
        self.sessions.append({
            "agent_type": agent_type,
            "tenant_id": tenant_id,
            "location_id": location_id,
            "table_session_id": table_session_id,
            "user_id": user_id,
            "context": context,
        })
        return SESSION_ID

    async def insert_agent_event(self, event):
        self.agent_events.append(event)

    async def insert_impressions(self, rows):
        if self.impression_error:
            raise self.impression_error
        inserted = []
        for row in rows:
            self.impressions.append(row)
            inserted.append({"id": f"imp-{len(self.impressions)}", "item_id": row["item_id"]})
        return inserted

    # Tool side effects
    async def insert_event(self, event_type, tenant_id, location_id, table_session_id, payload):
        self.events.append({
            "type": event_type,
            "tenant_id": tenant_id,
            "location_id": location_id,
            "table_session_id": table_session_id,
            "payload": payload,
        })

    async def event_exists(self, event_type, idempotency_key):
        return any(
            event["type"] == event_type and event["payload"].get("idempotency_key") == idempotency_key
            for event in self.events
        )

    async def list_open_order_timestamps(self, location_id):
        return list(self.open_orders.get(location_id, []))


def seed_restaurant(store: FakeStore, region: str = "EU") -> FakeStore:
    store.table_sessions[TABLE_SESSION_ID] = {"id": TABLE_SESSION_ID, "table_id": TABLE_ID}
    store.tables[TABLE_ID] = {"id": TABLE_ID, "location_id": LOCATION_ID}
    store.locations[LOCATION_ID] = {
        "id": LOCATION_ID, "tenant_id": TENANT_ID, "region": region, "currency": "EUR",
    }
    store.active_menus[LOCATION_ID] = MENU_ID
    store.menu_items[MENU_ID] = [dict(row) for row in MENU_ROWS]
    return store


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return seed_restaurant(FakeStore())


def menu_item_from_row(row: Dict[str, Any]) -> MenuItem:
    return MenuItem(
        id=row["id"],
        name=row["name"],
        description=row.get("description"),
        price_cents=row["price_cents"],
        currency=row["currency"],
        allergens=tuple(row.get("allergens") or ()),
        tags=tuple(row.get("tags") or ()),
        is_alcohol=row["is_alcohol"],
        is_available=row["is_available"],
        menu_id=row["menu_id"],
    )


@pytest.fixture
def make_context(clock):
    """Factory for a populated AgentSessionContext without touching a store."""
    def _make(**overrides) -> AgentSessionContext:
        expires_at_ms = clock.now_ms() + 5 * 60 * 1000
        values = dict(
            location_id=LOCATION_ID,
            tenant_id=TENANT_ID,
            region="EU",
            language="English",
            legal_drinking_age=17,
            avoid_alcohol=True,
            currency="EUR",
            menu=tuple(menu_item_from_row(row) for row in MENU_ROWS),
            retrieval_ttl_ms=5 * 60 * 1000,
            retrieval_cache={
                "menu": RetrievalSnapshot(expires_at_ms=expires_at_ms, payload="[]"),
                "allergens": RetrievalSnapshot(expires_at_ms=expires_at_ms, payload="{}"),
                "policies": RetrievalSnapshot(expires_at_ms=expires_at_ms, payload="{}"),
            },
        )
        values.update(overrides)
        return AgentSessionContext(**values)
    return _make
