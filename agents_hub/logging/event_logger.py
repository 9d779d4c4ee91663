"""Agent telemetry: session records, redacted agent events, impressions and feedback."""

import logging
import re
from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional, Sequence

from agents_hub.infra.metrics import agent_cost_usd_total, llm_tokens_total
from agents_hub.models.agent_context import AgentSessionContext
from agents_hub.models.agent_outputs import TokenUsage, UpsellSuggestion
from agents_hub.services.cost_calculator import estimate_cost_usd

logger = logging.getLogger(__name__)

MAX_TELEMETRY_CHARS = 1000
REDACTED = "[redacted]"

EMAIL_PATTERN = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")
# Matches may not touch word characters or hyphens, so UUIDs and ISO timestamps pass through.
# Card-like digit runs must be checked before phone numbers
CARD_PATTERN = re.compile(
    r"(?<![\w-])(?:\d{4}[ -]){3}\d{1,7}(?![\w-])"
    r"|(?<![\w-])\d{13,19}(?![\w-])"
)
PHONE_PATTERN = re.compile(
    r"(?<![\w+-])\+\d{1,3}(?:[ .-]?\(?\d{1,4}\)?){2,5}(?![\w-])"
    r"|(?<![\w-])\(?\d{3}\)?[ .-]?\d{3}[ .-]\d{4}(?![\w-])"
)


def redact_sensitive_text(value: str) -> str:
    """Replace e-mail addresses, card numbers and phone numbers with a marker."""
    if not value:
        return ""
    value = EMAIL_PATTERN.sub(REDACTED, value)
    value = CARD_PATTERN.sub(REDACTED, value)
    value = PHONE_PATTERN.sub(REDACTED, value)
    return value


def truncate_for_telemetry(value: str, limit: int = MAX_TELEMETRY_CHARS) -> str:
    if len(value) <= limit:
        return value
    return value[:limit]


def prepare_telemetry_text(value: Optional[str]) -> str:
    return truncate_for_telemetry(redact_sensitive_text(value or ""))


class AgentEventLogger:
    """Writes append-only audit rows for every agent invocation."""

    def __init__(self, store, clock):
        self.store = store
        self.clock = clock

    async def create_session_record(self, agent_type: str, context: AgentSessionContext) -> str:
        session_id = await self.store.create_agent_session(
            agent_type=agent_type,
            tenant_id=context.tenant_id,
            location_id=context.location_id,
            table_session_id=context.table_session_id,
            user_id=context.user_id,
            context={
                "allergies": context.allergies,
                "language": context.language,
                "region": context.region,
            },
        )
        logger.info("Agent session created", extra={"session_id": session_id, "agent_type": agent_type})
        return session_id

    async def log_agent_event(
        self,
        agent_type: str,
        context: AgentSessionContext,
        session_id: str,
        input_text: str,
        output_text: str,
        tools_used: Sequence[str],
        started_at_ms: int,
        model: str,
        usage: Optional[TokenUsage] = None,
    ) -> float:
        """
        Persist one agent event with redacted input/output summaries.

        Returns:
            Estimated cost of the run in USD
        """
        latency_ms = max(self.clock.now_ms() - started_at_ms, 0)
        cost_usd = estimate_cost_usd(model, usage)

        await self.store.insert_agent_event({
            "agent_type": agent_type,
            "session_id": session_id,
            "tenant_id": context.tenant_id,
            "location_id": context.location_id,
            "table_session_id": context.table_session_id,
            "input": {"message": prepare_telemetry_text(input_text)},
            "output": {"message": prepare_telemetry_text(output_text)},
            "tools_used": list(tools_used),
            "latency_ms": latency_ms,
            "cost_usd": cost_usd,
        })

        agent_cost_usd_total.labels(agent_type=agent_type).inc(cost_usd)
        if usage is not None:
            llm_tokens_total.labels(model=model, type="input").inc(usage.input_tokens)
            llm_tokens_total.labels(model=model, type="output").inc(usage.output_tokens)

        logger.info(
            "Agent event recorded",
            extra={
                "agent_type": agent_type,
                "session_id": session_id,
                "latency_ms": latency_ms,
                "cost_usd": cost_usd,
            }
        )
        return cost_usd

    async def record_recommendation_impressions(
        self,
        context: AgentSessionContext,
        session_id: str,
        suggestions: List[UpsellSuggestion],
    ) -> List[UpsellSuggestion]:
        """
        Persist one impression per suggestion and attach the returned ids.

        Ids are matched per ``item_id`` in insertion order, so duplicate items
        in one batch each get their own id.
        """
        if not suggestions:
            return []

        rows = [
            {
                "session_id": session_id,
                "tenant_id": context.tenant_id,
                "location_id": context.location_id,
                "item_id": suggestion.item_id,
                "rationale": suggestion.rationale,
                "accepted": False,
            }
            for suggestion in suggestions
        ]
        inserted = await self.store.insert_impressions(rows)

        ids_by_item: Dict[str, Deque[str]] = defaultdict(deque)
        for row in inserted:
            ids_by_item[str(row["item_id"])].append(str(row["id"]))

        annotated = []
        for suggestion in suggestions:
            queue = ids_by_item.get(suggestion.item_id)
            impression_id = queue.popleft() if queue else None
            annotated.append(suggestion.model_copy(update={"impression_id": impression_id}))
        return annotated

    async def record_feedback(
        self,
        agent_type: str,
        session_id: str,
        rating: str,
        message_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        location_id: Optional[str] = None,
        table_session_id: Optional[str] = None,
    ) -> None:
        await self.store.insert_agent_event({
            "agent_type": agent_type,
            "session_id": session_id,
            "tenant_id": tenant_id,
            "location_id": location_id,
            "table_session_id": table_session_id,
            "input": {"message": "feedback", "rating": rating, "message_id": message_id},
            "output": {"acknowledged": True},
            "tools_used": [],
            "latency_ms": 0,
            "cost_usd": 0,
        })
        logger.info(
            "Agent feedback recorded",
            extra={"agent_type": agent_type, "session_id": session_id, "rating": rating}
        )
