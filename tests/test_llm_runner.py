"""Tests for the OpenAI agent runner with a mocked client."""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from agents_hub.adapters.llm_runner import OpenAIAgentRunner
from agents_hub.infra.error_handler import AgentOutputInvalid, AgentTimeout, AuthError, ToolDisabled
from agents_hub.models.agent_context import UPSELL_AGENT, WAITER_AGENT
from agents_hub.models.runtime_config import AgentRuntimeOverrides
from agents_hub.services import agents
from agents_hub.services.tools import ToolExecutor
from conftest import TILAPIA_ID


def _response(content=None, tool_calls=None, prompt_tokens=10, completion_tokens=5):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message)],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


def _tool_call(call_id, name, arguments):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


class StatusError(Exception):
    """SDK-style error carrying an HTTP status code."""

    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code


@pytest.fixture
def client():
    mock_client = MagicMock()
    mock_client.chat.completions.create = AsyncMock()
    return mock_client


@pytest.fixture
def runner(store, clock, client):
    return OpenAIAgentRunner(
        ToolExecutor(store, clock),
        clock,
        timeout_seconds=5,
        max_tool_steps=2,
        failover_model="gpt-4o-mini",
        client=client,
    )


def _offered_tools(call):
    return [tool["function"]["name"] for tool in call.kwargs.get("tools", [])]


class TestToolLoop:
    """Tests for the function-calling loop."""

    @pytest.mark.asyncio
    async def test_tool_call_then_answer(self, runner, client, make_context):
        client.chat.completions.create.side_effect = [
            _response(tool_calls=[_tool_call("call_1", "get_menu", json.dumps({"limit": 2}))]),
            _response(content=json.dumps({"suggestions": []}), prompt_tokens=30, completion_tokens=7),
        ]
        context = make_context()

        result = await runner.run(agents.UPSELL, "Anything sweet?", context)

        assert result.output == {"suggestions": []}
        assert result.usage.input_tokens == 40
        assert result.usage.output_tokens == 12
        assert result.tools_used == ["get_menu"]
        assert result.model == agents.UPSELL.model

        second_call = client.chat.completions.create.call_args_list[1]
        tool_message = second_call.kwargs["messages"][-1]
        assert tool_message["role"] == "tool"
        assert tool_message["tool_call_id"] == "call_1"
        assert len(json.loads(tool_message["content"])["items"]) == 2
        assert second_call.kwargs["response_format"] == {"type": "json_object"}
        assert context.active_agent_type is None

    @pytest.mark.asyncio
    async def test_only_allowlisted_tools_offered(self, runner, client, make_context):
        client.chat.completions.create.return_value = _response(content="{}")
        context = make_context()
        context.runtime_overrides[UPSELL_AGENT] = AgentRuntimeOverrides(tool_allowlist=frozenset({"get_menu"}))

        await runner.run(agents.UPSELL, "hello", context)

        assert _offered_tools(client.chat.completions.create.call_args) == ["get_menu"]

    @pytest.mark.asyncio
    async def test_all_agent_tools_offered_without_overrides(self, runner, client, make_context):
        client.chat.completions.create.return_value = _response(content="{}")

        await runner.run(agents.WAITER, "hello", make_context())

        assert _offered_tools(client.chat.completions.create.call_args) == list(agents.WAITER.tools)

    @pytest.mark.asyncio
    async def test_disallowed_tool_call_fails_run(self, runner, client, make_context):
        client.chat.completions.create.return_value = _response(
            tool_calls=[_tool_call("call_1", "create_order", json.dumps({"cart": [{"item_id": TILAPIA_ID, "quantity": 1}]}))]
        )
        context = make_context()
        context.runtime_overrides[WAITER_AGENT] = AgentRuntimeOverrides(tool_allowlist=frozenset({"get_menu"}))

        with pytest.raises(ToolDisabled):
            await runner.run(agents.WAITER, "Order the tilapia", context)

    @pytest.mark.asyncio
    async def test_final_step_offers_no_tools(self, runner, client, make_context):
        looping = _response(content=None, tool_calls=[_tool_call("call_x", "get_menu", "{}")])
        client.chat.completions.create.side_effect = [
            looping,
            looping,
            _response(content=json.dumps({"suggestions": []}), tool_calls=[_tool_call("call_y", "get_menu", "{}")]),
        ]

        result = await runner.run(agents.UPSELL, "hello", make_context())

        calls = client.chat.completions.create.call_args_list
        assert len(calls) == 3
        assert "tools" in calls[0].kwargs
        assert "tools" not in calls[2].kwargs
        assert result.output == {"suggestions": []}

    @pytest.mark.asyncio
    async def test_tool_errors_returned_to_model(self, runner, client, make_context):
        client.chat.completions.create.side_effect = [
            _response(tool_calls=[
                _tool_call("call_1", "get_menu", "not json"),
                _tool_call("call_2", "get_menu", json.dumps({"limit": 500})),
            ]),
            _response(content="{}"),
        ]

        await runner.run(agents.UPSELL, "hello", make_context())

        messages = client.chat.completions.create.call_args_list[1].kwargs["messages"]
        first, second = [json.loads(m["content"]) for m in messages if m.get("role") == "tool"]
        assert first["error"] == "invalid_arguments"
        assert second["error"] == "invalid_arguments"
        assert second["details"][0]["loc"] == ["limit"]


class TestFinalContent:
    @pytest.mark.asyncio
    async def test_empty_reply_gives_no_output(self, runner, client, make_context):
        client.chat.completions.create.return_value = _response(content="   ")

        result = await runner.run(agents.WAITER, "hello", make_context())

        assert result.output is None

    @pytest.mark.asyncio
    async def test_non_json_reply_rejected(self, runner, client, make_context):
        client.chat.completions.create.return_value = _response(content="Sure! Try the sorbet.")

        with pytest.raises(AgentOutputInvalid):
            await runner.run(agents.WAITER, "hello", make_context())

    @pytest.mark.asyncio
    async def test_json_array_rejected(self, runner, client, make_context):
        client.chat.completions.create.return_value = _response(content="[1, 2]")

        with pytest.raises(AgentOutputInvalid, match="JSON object"):
            await runner.run(agents.WAITER, "hello", make_context())


class TestFailures:
    """Tests for timeouts and model failover."""

    @pytest.mark.asyncio
    async def test_timeout(self, store, clock, client, make_context):
        async def slow(**kwargs):
            await asyncio.sleep(1)

        client.chat.completions.create.side_effect = slow
        runner = OpenAIAgentRunner(ToolExecutor(store, clock), clock, timeout_seconds=0.01, client=client)
        context = make_context()

        with pytest.raises(AgentTimeout):
            await runner.run(agents.WAITER, "hello", context)

        assert context.active_agent_type is None

    @pytest.mark.asyncio
    async def test_failover_model_used_after_api_error(self, runner, client, make_context):
        client.chat.completions.create.side_effect = [
            StatusError("model overloaded", 400),
            _response(content="{}"),
        ]

        result = await runner.run(agents.WAITER, "hello", make_context())

        assert result.model == "gpt-4o-mini"
        assert client.chat.completions.create.call_args_list[1].kwargs["model"] == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_auth_errors_not_failed_over(self, runner, client, make_context):
        client.chat.completions.create.side_effect = StatusError("bad key", 401)

        with pytest.raises(AuthError):
            await runner.run(agents.WAITER, "hello", make_context())

        assert client.chat.completions.create.call_count == 1
