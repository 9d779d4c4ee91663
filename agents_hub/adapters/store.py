"""SQL access for the tables the agents service reads and writes.

Every method opens its own unit of work through ``get_db_session`` and
returns plain dicts so the services above never see SQLAlchemy rows.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import text

from agents_hub.infra.database import get_db_session


def _row_to_dict(row) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    return dict(row._mapping)


class SQLStore:
    """Relational store adapter backed by the shared SQLAlchemy engine."""

    # ------------------------------------------------------------------
    # Context lookups
    # ------------------------------------------------------------------

    async def get_table_session(self, table_session_id: str) -> Optional[Dict[str, Any]]:
        with get_db_session() as session:
            row = session.execute(
                text("SELECT id, table_id FROM table_sessions WHERE id = :id"),
                {"id": table_session_id}
            ).fetchone()
            return _row_to_dict(row)

    async def get_table(self, table_id: str) -> Optional[Dict[str, Any]]:
        with get_db_session() as session:
            row = session.execute(
                text("SELECT id, location_id FROM tables WHERE id = :id"),
                {"id": table_id}
            ).fetchone()
            return _row_to_dict(row)

    async def get_location(self, location_id: str) -> Optional[Dict[str, Any]]:
        with get_db_session() as session:
            row = session.execute(
                text("""
                    SELECT id, tenant_id, region, currency
                    FROM locations
                    WHERE id = :id
                """),
                {"id": location_id}
            ).fetchone()
            return _row_to_dict(row)

    async def get_active_menu_id(self, location_id: str) -> Optional[str]:
        with get_db_session() as session:
            row = session.execute(
                text("""
                    SELECT id
                    FROM menus
                    WHERE location_id = :location_id AND is_active = TRUE
                    ORDER BY published_at DESC NULLS LAST
                    LIMIT 1
                """),
                {"location_id": location_id}
            ).fetchone()
            return str(row.id) if row else None

    async def list_menu_items(self, menu_id: str) -> List[Dict[str, Any]]:
        with get_db_session() as session:
            rows = session.execute(
                text("""
                    SELECT id, name, description, price_cents, currency, allergens,
                           tags, is_alcohol, is_available, menu_id
                    FROM items
                    WHERE menu_id = :menu_id
                    ORDER BY name
                """),
                {"menu_id": menu_id}
            ).fetchall()
            return [dict(row._mapping) for row in rows]

    # ------------------------------------------------------------------
    # Runtime configuration
    # ------------------------------------------------------------------

    async def fetch_runtime_config_row(
        self, agent_type: str, tenant_id: Optional[str]
    ) -> Optional[Dict[str, Any]]:
        """Load the tenant row, or the global row when ``tenant_id`` is None."""
        tenant_clause = "tenant_id = :tenant_id" if tenant_id else "tenant_id IS NULL"
        with get_db_session() as session:
            row = session.execute(
                text(f"""
                    SELECT id, tenant_id, agent_type, enabled, session_budget_usd,
                           daily_budget_usd, instructions, tool_allowlist, autonomy_level,
                           retrieval_ttl_minutes, experiment_flag, sync_pending
                    FROM agent_runtime_configs
                    WHERE agent_type = :agent_type AND {tenant_clause}
                    LIMIT 1
                """),
                {"agent_type": agent_type, "tenant_id": tenant_id}
            ).fetchone()
            return _row_to_dict(row)

    async def acknowledge_runtime_config(self, config_id: str) -> None:
        with get_db_session() as session:
            session.execute(
                text("UPDATE agent_runtime_configs SET sync_pending = FALSE WHERE id = :id"),
                {"id": config_id}
            )

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    async def get_daily_spend(self, agent_type: str, tenant_id: Optional[str], since: datetime) -> float:
        tenant_clause = "tenant_id = :tenant_id" if tenant_id else "tenant_id IS NULL"
        with get_db_session() as session:
            total = session.execute(
                text(f"""
                    SELECT COALESCE(SUM(cost_usd), 0) AS total
                    FROM agent_events
                    WHERE agent_type = :agent_type
                      AND created_at >= :since
                      AND {tenant_clause}
                """),
                {"agent_type": agent_type, "tenant_id": tenant_id, "since": since}
            ).scalar()
            return float(total or 0)

    async def create_agent_session(
        self,
        agent_type: str,
        tenant_id: Optional[str],
        location_id: Optional[str],
        table_session_id: Optional[str],
        user_id: Optional[str],
        context: Dict[str, Any],
    ) -> str:
        with get_db_session() as session:
            new_id = session.execute(
                text("""
                    INSERT INTO agent_sessions (
                        agent_type, tenant_id, location_id, table_session_id, user_id, context
                    ) VALUES (
                        :agent_type, :tenant_id, :location_id, :table_session_id, :user_id,
                        CAST(:context AS jsonb)
                    )
                    RETURNING id
                """),
                {
                    "agent_type": agent_type,
                    "tenant_id": tenant_id,
                    "location_id": location_id,
                    "table_session_id": table_session_id,
                    "user_id": user_id,
                    "context": json.dumps(context),
                }
            ).scalar()
            return str(new_id)

    async def insert_agent_event(self, event: Dict[str, Any]) -> None:
        with get_db_session() as session:
            session.execute(
                text("""
                    INSERT INTO agent_events (
                        agent_type, session_id, tenant_id, location_id, table_session_id,
                        input, output, tools_used, latency_ms, cost_usd
                    ) VALUES (
                        :agent_type, :session_id, :tenant_id, :location_id, :table_session_id,
                        CAST(:input AS jsonb), CAST(:output AS jsonb), :tools_used,
                        :latency_ms, :cost_usd
                    )
                """),
                {
                    **event,
                    "input": json.dumps(event.get("input") or {}),
                    "output": json.dumps(event.get("output") or {}),
                    "tools_used": list(event.get("tools_used") or []),
                }
            )

    async def insert_impressions(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Insert impression rows, returning ``{id, item_id}`` in insertion order."""
        inserted: List[Dict[str, Any]] = []
        with get_db_session() as session:
            for row in rows:
                new_id = session.execute(
                    text("""
                        INSERT INTO recommendation_impressions (
                            session_id, tenant_id, location_id, item_id, rationale, accepted
                        ) VALUES (
                            :session_id, :tenant_id, :location_id, :item_id, :rationale, :accepted
                        )
                        RETURNING id
                    """),
                    row
                ).scalar()
                inserted.append({"id": str(new_id), "item_id": row["item_id"]})
        return inserted

    # ------------------------------------------------------------------
    # Tool side effects
    # ------------------------------------------------------------------

    async def insert_event(
        self,
        event_type: str,
        tenant_id: str,
        location_id: str,
        table_session_id: Optional[str],
        payload: Dict[str, Any],
    ) -> None:
        with get_db_session() as session:
            session.execute(
                text("""
                    INSERT INTO events (tenant_id, location_id, table_session_id, type, payload)
                    VALUES (:tenant_id, :location_id, :table_session_id, :type, CAST(:payload AS jsonb))
                """),
                {
                    "tenant_id": tenant_id,
                    "location_id": location_id,
                    "table_session_id": table_session_id,
                    "type": event_type,
                    "payload": json.dumps(payload),
                }
            )

    async def event_exists(self, event_type: str, idempotency_key: str) -> bool:
        with get_db_session() as session:
            row = session.execute(
                text("""
                    SELECT 1 FROM events
                    WHERE type = :type AND payload->>'idempotency_key' = :key
                    LIMIT 1
                """),
                {"type": event_type, "key": idempotency_key}
            ).fetchone()
            return row is not None

    async def list_open_order_timestamps(self, location_id: str) -> List[datetime]:
        with get_db_session() as session:
            rows = session.execute(
                text("""
                    SELECT created_at
                    FROM orders
                    WHERE location_id = :location_id
                      AND status IN ('submitted', 'in_kitchen')
                """),
                {"location_id": location_id}
            ).fetchall()
            return [row.created_at for row in rows]
