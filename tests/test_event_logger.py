"""Tests for agent telemetry recording."""

import pytest

from agents_hub.logging.event_logger import (
    AgentEventLogger,
    prepare_telemetry_text,
    redact_sensitive_text,
    truncate_for_telemetry,
)
from agents_hub.models.agent_outputs import TokenUsage
from agents_hub.services.safety import suggestion_from_item
from conftest import LOCATION_ID, NUT_TART_ID, SESSION_ID, SORBET_ID, TENANT_ID


@pytest.fixture
def event_logger(store, clock):
    return AgentEventLogger(store, clock)


class TestRedaction:
    """Tests for telemetry text scrubbing."""

    def test_email_phone_and_card_redacted(self):
        text = "Reach me at jane.doe@example.com or +250 788 123 456, card 4111 1111 1111 1111."

        assert redact_sensitive_text(text) == "Reach me at [redacted] or [redacted], card [redacted]."

    def test_plain_text_untouched(self):
        assert redact_sensitive_text("Two lemonades for table 4 please") == "Two lemonades for table 4 please"

    def test_uuids_and_timestamps_untouched(self):
        text = (
            '{"item_id": "a0000000-0000-4000-8000-000000000002", '
            f'"citations": ["menu:{TENANT_ID}"]}} at 2026-10-19 12:00'
        )

        assert redact_sensitive_text(text) == text

    def test_dashed_card_and_local_phone_redacted(self):
        text = "Card 4111-1111-1111-1111 and call (212) 555-0147"

        assert redact_sensitive_text(text) == "Card [redacted] and call [redacted]"

    def test_truncation(self):
        assert len(truncate_for_telemetry("x" * 1500)) == 1000
        assert truncate_for_telemetry("short") == "short"

    def test_prepare_handles_none(self):
        assert prepare_telemetry_text(None) == ""


class TestSessionRecord:
    @pytest.mark.asyncio
    async def test_session_context_snapshot(self, event_logger, store, make_context):
        context = make_context(allergies=["nuts"], language="French")

        session_id = await event_logger.create_session_record("waiter", context)

        assert session_id == SESSION_ID
        assert store.sessions[0]["context"] == {"allergies": ["nuts"], "language": "French", "region": "EU"}
        assert store.sessions[0]["tenant_id"] == TENANT_ID


class TestLogAgentEvent:
    """Tests for AgentEventLogger.log_agent_event."""

    @pytest.mark.asyncio
    async def test_records_cost_latency_and_redacted_text(self, event_logger, store, clock, make_context):
        started_at_ms = clock.now_ms()
        clock.advance(1.5)

        cost = await event_logger.log_agent_event(
            agent_type="waiter",
            context=make_context(),
            session_id=SESSION_ID,
            input_text="Email me at guest@example.com",
            output_text="y" * 2000,
            tools_used=["get_menu"],
            started_at_ms=started_at_ms,
            model="gpt-4.1",
            usage=TokenUsage(input_tokens=1000, output_tokens=500),
        )

        assert cost == pytest.approx(0.006)
        event = store.agent_events[0]
        assert event["latency_ms"] == 1500
        assert event["cost_usd"] == cost
        assert event["input"] == {"message": "Email me at [redacted]"}
        assert len(event["output"]["message"]) == 1000
        assert event["tools_used"] == ["get_menu"]
        assert event["location_id"] == LOCATION_ID

    @pytest.mark.asyncio
    async def test_missing_usage_costs_nothing(self, event_logger, store, clock, make_context):
        cost = await event_logger.log_agent_event(
            agent_type="upsell",
            context=make_context(),
            session_id=SESSION_ID,
            input_text="hi",
            output_text="failed",
            tools_used=[],
            started_at_ms=clock.now_ms(),
            model="gpt-4.1",
        )

        assert cost == 0.0
        assert store.agent_events[0]["latency_ms"] == 0


class TestImpressions:
    """Tests for recommendation impression recording."""

    @pytest.mark.asyncio
    async def test_ids_assigned_per_item_in_order(self, event_logger, store, make_context):
        context = make_context()
        tart = suggestion_from_item(context.find_item(NUT_TART_ID))
        sorbet = suggestion_from_item(context.find_item(SORBET_ID))

        annotated = await event_logger.record_recommendation_impressions(
            context, SESSION_ID, [tart, sorbet, tart]
        )

        assert [(s.item_id, s.impression_id) for s in annotated] == [
            (NUT_TART_ID, "imp-1"),
            (SORBET_ID, "imp-2"),
            (NUT_TART_ID, "imp-3"),
        ]
        assert tart.impression_id is None
        assert all(row["accepted"] is False for row in store.impressions)
        assert store.impressions[0]["session_id"] == SESSION_ID

    @pytest.mark.asyncio
    async def test_no_suggestions_writes_nothing(self, event_logger, store, make_context):
        assert await event_logger.record_recommendation_impressions(make_context(), SESSION_ID, []) == []
        assert store.impressions == []


class TestFeedback:
    @pytest.mark.asyncio
    async def test_feedback_event(self, event_logger, store):
        await event_logger.record_feedback(
            agent_type="waiter",
            session_id=SESSION_ID,
            rating="up",
            message_id="msg-1",
            tenant_id=TENANT_ID,
        )

        event = store.agent_events[0]
        assert event["input"] == {"message": "feedback", "rating": "up", "message_id": "msg-1"}
        assert event["output"] == {"acknowledged": True}
        assert event["cost_usd"] == 0
        assert event["latency_ms"] == 0
