"""Prometheus metrics export."""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Request metrics
request_count = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
)

# Agent metrics
agent_runs_total = Counter(
    "agent_runs_total",
    "Total agent invocations",
    ["agent_type", "status"],
)

agent_run_duration = Histogram(
    "agent_run_duration_seconds",
    "Agent invocation duration in seconds",
    ["agent_type"],
)

agent_cost_usd_total = Counter(
    "agent_cost_usd_total",
    "Estimated agent spend in USD",
    ["agent_type"],
)

llm_tokens_total = Counter(
    "llm_tokens_total",
    "Total LLM tokens",
    ["model", "type"],  # type: input or output
)

budget_rejections_total = Counter(
    "agent_budget_rejections_total",
    "Requests rejected by a session or daily budget",
    ["agent_type", "kind"],
)

# Tool metrics
tool_calls_total = Counter(
    "tool_calls_total",
    "Total agent tool calls",
    ["tool_name", "status"],
)


def get_metrics_response() -> Response:
    """Get Prometheus metrics as HTTP response."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
