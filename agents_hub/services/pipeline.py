"""Upsell -> Allergen Guardian -> Impressions -> Waiter orchestration.

Each request walks an explicit state machine. The upsell stage is the only
one whose failures are recovered; once the guardian stage starts any error
fails the request, so a half-filtered suggestion list never reaches a diner.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from agents_hub.infra.error_handler import AgentOutputMissing
from agents_hub.models.agent_context import (
    ALLERGEN_GUARDIAN_AGENT,
    UPSELL_AGENT,
    WAITER_AGENT,
    AgentSessionContext,
)
from agents_hub.models.agent_outputs import (
    AllergenGuardianOutput,
    UpsellOutput,
    UpsellSuggestion,
    WaiterOutput,
)
from agents_hub.models.runtime_config import RuntimeConfig
from agents_hub.services import agents as agent_definitions
from agents_hub.services.agents import AgentDefinition, parse_agent_output
from agents_hub.services.citations import DisclaimerSet, sanitise_citations
from agents_hub.services.cost_calculator import estimate_cost_usd
from agents_hub.services.safety import (
    ALL_SUGGESTIONS_REMOVED,
    apply_allergen_filter,
    blocked_disclaimers,
    summarise_blocked,
    summarise_suggestions,
)

logger = logging.getLogger(__name__)

UPSELL_UNAVAILABLE = "Upsell suggestions are temporarily unavailable. Please ask a team member for recommendations."
SAFETY_BYPASS_REMOVED = "Some model suggestions were removed because they bypassed safety checks."


class PipelineState(str, Enum):
    UPSELL = "upsell"
    UPSELL_FAILED = "upsell_failed"
    GUARDIAN = "guardian"
    IMPRESSIONS = "impressions"
    WAITER = "waiter"
    DONE = "done"
    FAILED = "failed"


TRANSITIONS: Dict[PipelineState, FrozenSet[PipelineState]] = {
    PipelineState.UPSELL: frozenset({PipelineState.GUARDIAN, PipelineState.UPSELL_FAILED, PipelineState.FAILED}),
    PipelineState.UPSELL_FAILED: frozenset({PipelineState.GUARDIAN, PipelineState.FAILED}),
    PipelineState.GUARDIAN: frozenset({PipelineState.IMPRESSIONS, PipelineState.FAILED}),
    PipelineState.IMPRESSIONS: frozenset({PipelineState.WAITER, PipelineState.FAILED}),
    PipelineState.WAITER: frozenset({PipelineState.DONE, PipelineState.FAILED}),
    PipelineState.DONE: frozenset(),
    PipelineState.FAILED: frozenset(),
}


@dataclass
class PipelineRun:
    """Working state of one request as it moves through the stages."""
    message: str
    context: AgentSessionContext
    session_id: str
    state: PipelineState = PipelineState.UPSELL
    history: List[PipelineState] = field(default_factory=lambda: [PipelineState.UPSELL])
    disclaimers: DisclaimerSet = field(default_factory=DisclaimerSet)
    total_cost_usd: float = 0.0

    def transition(self, new_state: PipelineState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid pipeline transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)


@dataclass
class WaiterResult:
    session_id: str
    reply: str
    upsell: List[UpsellSuggestion]
    disclaimers: List[str]
    citations: List[str]
    cost_usd: float
    states: List[PipelineState] = field(default_factory=list)


class WaiterPipeline:
    """Runs the three waiter agents for one diner message."""

    def __init__(
        self,
        resolver,
        budget,
        event_logger,
        runner,
        clock,
        upsell_agent: AgentDefinition = agent_definitions.UPSELL,
        guardian_agent: AgentDefinition = agent_definitions.ALLERGEN_GUARDIAN,
        waiter_agent: AgentDefinition = agent_definitions.WAITER,
    ):
        self.resolver = resolver
        self.budget = budget
        self.event_logger = event_logger
        self.runner = runner
        self.clock = clock
        self.upsell_agent = upsell_agent
        self.guardian_agent = guardian_agent
        self.waiter_agent = waiter_agent

    async def run(
        self,
        message: str,
        context: AgentSessionContext,
        session_id: Optional[str] = None,
    ) -> WaiterResult:
        """
        Produce the waiter reply for ``message``.

        The waiter's enable check runs before anything else so a disabled
        waiter or exhausted budget fails the request before upsell spend.
        """
        waiter_runtime = await self.resolver.ensure_agent_enabled(WAITER_AGENT, context.tenant_id)

        if not session_id:
            session_id = await self.event_logger.create_session_record(WAITER_AGENT, context)
        context.session_id = session_id

        run = PipelineRun(message=message, context=context, session_id=session_id)
        try:
            await self._upsell_stage(run)
            await self._guardian_stage(run)
            await self._impression_stage(run)
            waiter_output = await self._waiter_stage(run, waiter_runtime)
        except Exception:
            run.transition(PipelineState.FAILED)
            logger.error(
                "Waiter pipeline failed",
                extra={"session_id": session_id, "states": [state.value for state in run.history]},
                exc_info=True,
            )
            raise

        return self._finish(run, waiter_output)

    async def _upsell_stage(self, run: PipelineRun) -> None:
        context = run.context
        started_at_ms = self.clock.now_ms()
        result = None

        try:
            runtime = await self.resolver.ensure_agent_enabled(UPSELL_AGENT, context.tenant_id)
            self.resolver.apply_override(context, UPSELL_AGENT, runtime)

            result = await self.runner.run(self.upsell_agent, run.message, context)
            output = parse_agent_output(UPSELL_AGENT, UpsellOutput, result.output or {})
            context.suggestions = list(output.suggestions)

            cost_estimate = estimate_cost_usd(result.model, result.usage)
            await self.budget.assert_budgets_after_run(UPSELL_AGENT, context.tenant_id, runtime, cost_estimate)

            run.total_cost_usd += await self.event_logger.log_agent_event(
                agent_type=UPSELL_AGENT,
                context=context,
                session_id=run.session_id,
                input_text=run.message,
                output_text=summarise_suggestions(context.suggestions),
                tools_used=result.tools_used,
                started_at_ms=started_at_ms,
                model=result.model,
                usage=result.usage,
            )
        except Exception as e:
            context.suggestions = []
            await self._log_upsell_failure(run, e, started_at_ms, result)
            logger.warning(
                "Upsell agent unavailable",
                extra={"session_id": run.session_id, "error": str(e)}
            )
            run.disclaimers.add(UPSELL_UNAVAILABLE)
            run.transition(PipelineState.UPSELL_FAILED)

        run.transition(PipelineState.GUARDIAN)

    async def _log_upsell_failure(self, run: PipelineRun, error: Exception, started_at_ms: int, result) -> None:
        """Record the failed upsell run; telemetry errors here are logged, not raised."""
        try:
            await self.event_logger.log_agent_event(
                agent_type=UPSELL_AGENT,
                context=run.context,
                session_id=run.session_id,
                input_text=run.message,
                output_text=str(error) or "Upsell agent unavailable.",
                tools_used=result.tools_used if result else [],
                started_at_ms=started_at_ms,
                model=result.model if result else self.upsell_agent.model,
                usage=result.usage if result else None,
            )
        except Exception as log_error:
            logger.warning(
                "Failed to record upsell failure event",
                extra={"session_id": run.session_id, "error": str(log_error)}
            )

    async def _guardian_stage(self, run: PipelineRun) -> None:
        context = run.context
        if not context.suggestions:
            run.transition(PipelineState.IMPRESSIONS)
            return

        started_at_ms = self.clock.now_ms()
        runtime = await self.resolver.ensure_agent_enabled(ALLERGEN_GUARDIAN_AGENT, context.tenant_id)
        self.resolver.apply_override(context, ALLERGEN_GUARDIAN_AGENT, runtime)

        guardian_input = json.dumps({
            "suggestions": [
                suggestion.model_dump(exclude={"impression_id"}) for suggestion in context.suggestions
            ]
        })
        result = await self.runner.run(self.guardian_agent, guardian_input, context)
        output = parse_agent_output(ALLERGEN_GUARDIAN_AGENT, AllergenGuardianOutput, result.output or {})

        run.disclaimers.extend(blocked_disclaimers(output.blocked, context.suggestions, context))
        run.disclaimers.extend(output.notes)

        filtered = apply_allergen_filter(context.suggestions, output)
        if not filtered:
            run.disclaimers.add(ALL_SUGGESTIONS_REMOVED)
        context.suggestions = filtered

        cost_estimate = estimate_cost_usd(result.model, result.usage)
        await self.budget.assert_budgets_after_run(ALLERGEN_GUARDIAN_AGENT, context.tenant_id, runtime, cost_estimate)

        run.total_cost_usd += await self.event_logger.log_agent_event(
            agent_type=ALLERGEN_GUARDIAN_AGENT,
            context=context,
            session_id=run.session_id,
            input_text=guardian_input,
            output_text=summarise_blocked(output.blocked, context),
            tools_used=result.tools_used,
            started_at_ms=started_at_ms,
            model=result.model,
            usage=result.usage,
        )
        run.transition(PipelineState.IMPRESSIONS)

    async def _impression_stage(self, run: PipelineRun) -> None:
        context = run.context
        context.suggestions = await self.event_logger.record_recommendation_impressions(
            context, run.session_id, context.suggestions
        )
        run.transition(PipelineState.WAITER)

    async def _waiter_stage(self, run: PipelineRun, runtime: RuntimeConfig) -> WaiterOutput:
        context = run.context
        started_at_ms = self.clock.now_ms()
        self.resolver.apply_override(context, WAITER_AGENT, runtime)

        result = await self.runner.run(self.waiter_agent, run.message, context)
        if result.output is None:
            raise AgentOutputMissing(WAITER_AGENT)
        output = parse_agent_output(WAITER_AGENT, WaiterOutput, result.output)

        cost_estimate = estimate_cost_usd(result.model, result.usage)
        await self.budget.assert_budgets_after_run(WAITER_AGENT, context.tenant_id, runtime, cost_estimate)

        run.total_cost_usd += await self.event_logger.log_agent_event(
            agent_type=WAITER_AGENT,
            context=context,
            session_id=run.session_id,
            input_text=run.message,
            output_text=output.reply,
            tools_used=result.tools_used,
            started_at_ms=started_at_ms,
            model=result.model,
            usage=result.usage,
        )
        run.transition(PipelineState.DONE)
        return output

    def _finish(self, run: PipelineRun, output: WaiterOutput) -> WaiterResult:
        context = run.context
        allowed_ids = {suggestion.item_id for suggestion in context.suggestions}
        if any(reference.item_id not in allowed_ids for reference in output.upsell):
            run.disclaimers.add(SAFETY_BYPASS_REMOVED)

        run.disclaimers.extend(output.disclaimers)
        citations = sanitise_citations(output.citations, run.disclaimers)

        return WaiterResult(
            session_id=run.session_id,
            reply=output.reply,
            upsell=list(context.suggestions),
            disclaimers=run.disclaimers.to_list(),
            citations=citations,
            cost_usd=round(run.total_cost_usd, 6),
            states=list(run.history),
        )
