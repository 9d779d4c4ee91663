"""Diner-facing agent API router."""

import logging
from typing import Awaitable, Callable

from fastapi import APIRouter, Depends, Request

from agents_hub.api.models import (
    ErrorResponse,
    FeedbackRequest,
    FeedbackResponse,
    WaiterRequest,
    WaiterResponse,
)
from agents_hub.logging.event_logger import AgentEventLogger
from agents_hub.models.agent_context import AgentSessionContext
from agents_hub.services.pipeline import WaiterPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agents", tags=["Agents"])

ContextFactory = Callable[..., Awaitable[AgentSessionContext]]


def _as_str(value):
    return str(value) if value is not None else None


def get_waiter_pipeline(request: Request) -> WaiterPipeline:
    return request.app.state.waiter_pipeline


def get_context_factory(request: Request) -> ContextFactory:
    return request.app.state.context_factory


def get_event_logger(request: Request) -> AgentEventLogger:
    return request.app.state.event_logger


@router.post(
    "/waiter",
    response_model=WaiterResponse,
    responses={
        400: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def run_waiter(
    body: WaiterRequest,
    pipeline: WaiterPipeline = Depends(get_waiter_pipeline),
    build_context: ContextFactory = Depends(get_context_factory),
):
    """
    Answer a diner message with upsell suggestions that passed allergen checks.

    Upsell failures degrade to a disclaimer; any later failure fails the request.
    """
    context = await build_context(
        location_id=_as_str(body.location_id),
        tenant_id=_as_str(body.tenant_id),
        table_session_id=_as_str(body.table_session_id),
        user_id=_as_str(body.user_id),
        language=body.language,
        allergies=body.allergies,
        cart=body.cart,
        age_verified=body.age_verified,
    )

    result = await pipeline.run(body.message, context, session_id=_as_str(body.session_id))

    logger.info(
        "Waiter reply produced",
        extra={
            "session_id": result.session_id,
            "upsell_count": len(result.upsell),
            "disclaimer_count": len(result.disclaimers),
            "cost_usd": result.cost_usd,
        }
    )

    return WaiterResponse(
        session_id=result.session_id,
        reply=result.reply,
        upsell=result.upsell,
        disclaimers=result.disclaimers,
        citations=result.citations,
        cost_usd=result.cost_usd,
    )


@router.post("/feedback", response_model=FeedbackResponse)
async def record_feedback(
    body: FeedbackRequest,
    event_logger: AgentEventLogger = Depends(get_event_logger),
):
    """Record a diner's rating of an agent reply."""
    await event_logger.record_feedback(
        agent_type=body.agent_type,
        session_id=str(body.session_id),
        rating=body.rating,
        message_id=body.message_id,
        tenant_id=_as_str(body.tenant_id),
        location_id=_as_str(body.location_id),
        table_session_id=_as_str(body.table_session_id),
    )
    return FeedbackResponse(status="recorded")
