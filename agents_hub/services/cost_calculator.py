"""Cost estimation for LLM token usage."""

from typing import Optional

from agents_hub.models.agent_outputs import TokenUsage


# Pricing per 1M tokens (adjust as vendor prices change)
PRICING = {
    "gpt-4.1": {"input": 2.00, "output": 8.00},
    "gpt-4.1-mini": {"input": 0.40, "output": 1.60},
    "gpt-4.1-nano": {"input": 0.10, "output": 0.40},
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4-turbo": {"input": 10.00, "output": 30.00},
    "gpt-3.5-turbo": {"input": 0.50, "output": 1.50},
}

# Unknown models are billed at a conservative (high) rate
DEFAULT_PRICING = {"input": 2.50, "output": 10.00}


def estimate_cost_usd(model: str, usage: Optional[TokenUsage]) -> float:
    """
    Estimate the USD cost of a model run.

    Args:
        model: Model name used for the run
        usage: Accumulated token usage, or None when the run reported none

    Returns:
        Cost in USD rounded to 6 decimal places
    """
    if usage is None:
        return 0.0

    model_pricing = PRICING.get(model, DEFAULT_PRICING)
    input_cost = (usage.input_tokens / 1_000_000) * model_pricing["input"]
    output_cost = (usage.output_tokens / 1_000_000) * model_pricing["output"]
    return round(input_cost + output_cost, 6)
