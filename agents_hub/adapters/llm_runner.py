"""OpenAI Chat Completions runner with a bounded function-calling loop."""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI
from pydantic import ValidationError

from agents_hub.infra.config import config
from agents_hub.infra.error_handler import (
    AgentOutputInvalid,
    AgentTimeout,
    ErrorCategory,
    RetryableError,
    ToolDisabled,
    retry_with_backoff,
    wrap_llm_error,
)
from agents_hub.infra.metrics import agent_run_duration, agent_runs_total
from agents_hub.models.agent_context import AgentSessionContext
from agents_hub.models.agent_outputs import TokenUsage
from agents_hub.services.agents import AgentDefinition
from agents_hub.services.prompt_builder import build_messages
from agents_hub.services.tools import ToolExecutor, build_openai_tools

logger = logging.getLogger(__name__)

FAILOVER_CATEGORIES = (ErrorCategory.NETWORK, ErrorCategory.RATE_LIMIT, ErrorCategory.API_ERROR)


@dataclass
class AgentRunResult:
    """Raw outcome of one agent run; ``output`` is None when the model said nothing."""
    output: Optional[Dict[str, Any]]
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    tools_used: List[str] = field(default_factory=list)


def _usage_from_response(response) -> TokenUsage:
    usage = getattr(response, "usage", None)
    if usage is None:
        return TokenUsage()
    return TokenUsage(
        input_tokens=usage.prompt_tokens or 0,
        output_tokens=usage.completion_tokens or 0,
    )


def _parse_final_content(agent_type: str, content: Optional[str]) -> Optional[Dict[str, Any]]:
    if content is None or not content.strip():
        return None
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as e:
        raise AgentOutputInvalid(agent_type, f"response is not valid JSON ({e.msg})")
    if not isinstance(parsed, dict):
        raise AgentOutputInvalid(agent_type, "response must be a JSON object")
    return parsed


class OpenAIAgentRunner:
    """Runs an AgentDefinition against the shared session context."""

    def __init__(
        self,
        tool_executor: ToolExecutor,
        clock,
        timeout_seconds: float = config.AGENT_TIMEOUT_SECONDS,
        max_tool_steps: int = config.AGENT_MAX_TOOL_STEPS,
        failover_model: Optional[str] = config.OPENAI_FAILOVER_MODEL,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.tool_executor = tool_executor
        self.clock = clock
        self.timeout_seconds = timeout_seconds
        self.max_tool_steps = max_tool_steps
        self.failover_model = failover_model
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        """Lazy initialization of OpenAI client."""
        if self._client is None:
            if not config.OPENAI_API_KEY:
                raise ValueError("OPENAI_API_KEY not configured")
            self._client = AsyncOpenAI(api_key=config.OPENAI_API_KEY, base_url=config.OPENAI_BASE_URL)
        return self._client

    async def run(self, agent: AgentDefinition, user_input: str, context: AgentSessionContext) -> AgentRunResult:
        """
        Run ``agent`` with ``user_input`` while the context is marked as acting
        for that agent.

        Raises:
            AgentTimeout: the run exceeded the configured timeout
            ToolDisabled: the model called a tool its allowlist excludes
            AgentOutputInvalid: the final message was not a JSON object
        """
        start_time = time.time()
        status = "failure"
        with context.acting_as(agent.agent_type):
            try:
                result = await asyncio.wait_for(
                    self._run_loop(agent, user_input, context),
                    timeout=self.timeout_seconds,
                )
                status = "success"
                return result
            except asyncio.TimeoutError:
                status = "timeout"
                raise AgentTimeout(agent.agent_type, self.timeout_seconds)
            finally:
                agent_runs_total.labels(agent_type=agent.agent_type, status=status).inc()
                agent_run_duration.labels(agent_type=agent.agent_type).observe(time.time() - start_time)

    async def _run_loop(self, agent: AgentDefinition, user_input: str, context: AgentSessionContext) -> AgentRunResult:
        overrides = context.runtime_overrides.get(agent.agent_type)
        tool_names = [name for name in agent.tools if overrides is None or overrides.allows_tool(name)]
        openai_tools = build_openai_tools(tool_names) if tool_names else None

        messages = build_messages(
            context=context,
            agent_instructions=agent.instructions(context),
            output_model=agent.output_model,
            tenant_instructions=overrides.instructions if overrides else "",
            snapshots=context.fresh_snapshots(self.clock.now_ms()),
            user_input=user_input,
        )

        usage = TokenUsage()
        tools_used: List[str] = []
        model = agent.model
        content: Optional[str] = None

        # The final step never offers tools so the model has to answer
        for step in range(self.max_tool_steps + 1):
            step_tools = openai_tools if step < self.max_tool_steps else None
            response, model = await self._complete(agent, model, messages, step_tools)
            usage = usage + _usage_from_response(response)

            if not response.choices:
                break
            message = response.choices[0].message

            if not message.tool_calls or step_tools is None:
                content = message.content
                break

            messages.append({
                "role": "assistant",
                "content": message.content,
                "tool_calls": [
                    {
                        "id": tool_call.id,
                        "type": "function",
                        "function": {
                            "name": tool_call.function.name,
                            "arguments": tool_call.function.arguments,
                        }
                    }
                    for tool_call in message.tool_calls
                ]
            })

            for tool_call in message.tool_calls:
                tool_name = tool_call.function.name
                if tool_name not in tools_used:
                    tools_used.append(tool_name)
                tool_result = await self._call_tool(tool_name, tool_call.function.arguments, context, agent.agent_type)
                messages.append({
                    "role": "tool",
                    "tool_call_id": tool_call.id,
                    "content": json.dumps(tool_result, default=str),
                })

        return AgentRunResult(
            output=_parse_final_content(agent.agent_type, content),
            model=model,
            usage=usage,
            tools_used=tools_used,
        )

    async def _complete(self, agent: AgentDefinition, model: str, messages: List[dict], tools: Optional[List[dict]]):
        """Call the model with retries, switching to the failover model once if needed."""
        try:
            return await self._complete_with_retry(agent, model, messages, tools), model
        except RetryableError as e:
            if (
                not self.failover_model
                or self.failover_model == model
                or e.category not in FAILOVER_CATEGORIES
            ):
                raise
            logger.warning(
                "Switching to failover model",
                extra={"agent_type": agent.agent_type, "model": model, "failover_model": self.failover_model, "error": e.message}
            )
            return await self._complete_with_retry(agent, self.failover_model, messages, tools), self.failover_model

    async def _complete_with_retry(self, agent: AgentDefinition, model: str, messages: List[dict], tools: Optional[List[dict]]):
        request_params: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "response_format": {"type": "json_object"},
        }
        if tools:
            request_params["tools"] = tools
            request_params["tool_choice"] = "auto"

        async def call_llm():
            try:
                return await self.client.chat.completions.create(**request_params)
            except Exception as e:
                raise wrap_llm_error(e, "openai")

        def on_retry(error: Exception, attempt: int) -> None:
            logger.warning(
                "Retrying LLM call",
                extra={"agent_type": agent.agent_type, "model": model, "attempt": attempt, "error": str(error)}
            )

        return await retry_with_backoff(call_llm, on_retry=on_retry)

    async def _call_tool(
        self,
        tool_name: str,
        raw_arguments: Optional[str],
        context: AgentSessionContext,
        agent_type: str,
    ) -> Dict[str, Any]:
        """Execute a tool call; failures other than ToolDisabled go back to the model."""
        try:
            arguments = json.loads(raw_arguments) if raw_arguments else {}
        except json.JSONDecodeError:
            return {"error": "invalid_arguments", "message": "Arguments must be a JSON object."}
        if not isinstance(arguments, dict):
            return {"error": "invalid_arguments", "message": "Arguments must be a JSON object."}

        try:
            return await self.tool_executor.execute_tool(tool_name, arguments, context, agent_type)
        except ToolDisabled:
            raise
        except ValidationError as e:
            return {"error": "invalid_arguments", "details": e.errors(include_url=False)}
        except Exception as e:
            logger.warning(
                "Tool call failed",
                extra={"tool_name": tool_name, "agent_type": agent_type, "error": str(e)},
                exc_info=True,
            )
            return {"error": "tool_failed", "message": str(e)}
