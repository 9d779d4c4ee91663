"""Error taxonomy for the agents service plus retry helpers for LLM calls."""

import asyncio
import random
import re
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple


class AgentServiceError(Exception):
    """Base class for errors that map onto an HTTP response."""
    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def public_message(self) -> str:
        """Message safe to return to clients."""
        return self.message


class InvalidRequest(AgentServiceError):
    status_code = 400
    error_code = "invalid_request"

    def __init__(self, message: str, details: Optional[List[dict]] = None):
        super().__init__(message)
        self.details = details or [{"message": message}]


class AgentDisabled(AgentServiceError):
    status_code = 503
    error_code = "agent_disabled"

    def __init__(self, agent_type: str):
        self.agent_type = agent_type
        super().__init__(f"Agent {agent_type} is currently disabled by an administrator.")


class BudgetExceeded(AgentServiceError):
    status_code = 429
    error_code = "agent_budget_exceeded"

    def __init__(self, agent_type: str, message: str):
        self.agent_type = agent_type
        super().__init__(message)


class SessionBudgetExceeded(BudgetExceeded):
    def __init__(self, agent_type: str, budget_usd: float):
        self.budget_usd = budget_usd
        super().__init__(agent_type, f"Agent {agent_type} exceeded per-session budget ({budget_usd} USD).")


class DailyBudgetExceeded(BudgetExceeded):
    def __init__(self, agent_type: str, budget_usd: float, exhausted: bool = False):
        self.budget_usd = budget_usd
        if exhausted:
            message = f"Daily budget exhausted for agent {agent_type}."
        else:
            message = f"Agent {agent_type} would exceed the daily budget ({budget_usd} USD)."
        super().__init__(agent_type, message)


class NotFound(AgentServiceError):
    """A referenced tenant/location/table row is missing (misconfiguration)."""


class NoActiveMenu(NotFound):
    def __init__(self, location_id: str):
        self.location_id = location_id
        super().__init__("No active menu configured for location")


class ToolDisabled(AgentServiceError):
    def __init__(self, tool_name: str, agent_type: str):
        self.tool_name = tool_name
        self.agent_type = agent_type
        super().__init__(f"Tool {tool_name} is disabled for agent {agent_type}.")


class AgentOutputMissing(AgentServiceError):
    def __init__(self, agent_type: str):
        self.agent_type = agent_type
        super().__init__(f"Agent {agent_type} did not produce a response.")


class AgentOutputInvalid(AgentServiceError):
    def __init__(self, agent_type: str, detail: str):
        self.agent_type = agent_type
        super().__init__(f"Agent {agent_type} produced output that failed validation: {detail}")


class AgentTimeout(AgentServiceError):
    def __init__(self, agent_type: str, timeout_seconds: float):
        self.agent_type = agent_type
        super().__init__(f"Agent {agent_type} timed out after {timeout_seconds}s")


# ---------------------------------------------------------------------------
# LLM transport errors
# ---------------------------------------------------------------------------

class ErrorCategory(str, Enum):
    """Categories of LLM transport errors."""
    NETWORK = "network"
    API_ERROR = "api_error"
    AUTH_ERROR = "auth_error"
    RATE_LIMIT = "rate_limit"
    UNKNOWN = "unknown"


class RetryableError(Exception):
    """Base exception for classified LLM transport errors."""
    def __init__(self, message: str, category: ErrorCategory, retryable: bool = True, retry_after: Optional[float] = None):
        self.message = message
        self.category = category
        self.retryable = retryable
        self.retry_after = retry_after
        super().__init__(message)


class NetworkError(RetryableError):
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, ErrorCategory.NETWORK, retryable=True, retry_after=retry_after)


class APIError(RetryableError):
    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = False):
        self.status_code = status_code
        super().__init__(message, ErrorCategory.API_ERROR, retryable=retryable)


class AuthError(RetryableError):
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.AUTH_ERROR, retryable=False)


class RateLimitError(RetryableError):
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, ErrorCategory.RATE_LIMIT, retryable=True, retry_after=retry_after)


def classify_error(error: Exception) -> Tuple[ErrorCategory, bool, Optional[float]]:
    """
    Classify an error into a category and determine if it's retryable.

    Returns:
        Tuple of (category, retryable, retry_after_seconds)
    """
    if isinstance(error, RetryableError):
        return error.category, error.retryable, error.retry_after

    if isinstance(error, AgentServiceError):
        return ErrorCategory.UNKNOWN, False, None

    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return ErrorCategory.NETWORK, True, None

    error_str = str(error).lower()

    if "rate limit" in error_str or "429" in error_str or "too many requests" in error_str:
        retry_after = None
        match = re.search(r"retry[_-]after[:\s]+(\d+)", error_str)
        if match:
            retry_after = float(match.group(1))
        return ErrorCategory.RATE_LIMIT, True, retry_after

    if any(keyword in error_str for keyword in ["connection", "timeout", "network", "dns", "refused"]):
        return ErrorCategory.NETWORK, True, None

    if any(keyword in error_str for keyword in ["unauthorized", "forbidden", "401", "403", "authentication"]):
        return ErrorCategory.AUTH_ERROR, False, None

    return ErrorCategory.UNKNOWN, False, None


async def retry_with_backoff(
    func: Callable,
    max_retries: int = 2,
    initial_delay: float = 0.5,
    max_delay: float = 8.0,
    exponential_base: float = 2.0,
    on_retry: Optional[Callable[[Exception, int], None]] = None,
) -> Any:
    """
    Retry an async callable with exponential backoff and jitter.

    Only errors that classify_error marks as retryable are retried; the last
    exception is re-raised once retries are exhausted.
    """
    for attempt in range(max_retries + 1):
        try:
            return await func()
        except Exception as e:
            _, retryable, retry_after = classify_error(e)
            if not retryable or attempt >= max_retries:
                raise

            if retry_after:
                delay = min(retry_after, max_delay)
            else:
                delay = min(initial_delay * (exponential_base ** attempt), max_delay)
            delay += random.uniform(0, delay * 0.1)

            if on_retry:
                on_retry(e, attempt + 1)

            await asyncio.sleep(delay)


def wrap_llm_error(error: Exception, provider: str = "openai") -> Exception:
    """Wrap an SDK error into the RetryableError family."""
    if isinstance(error, (RetryableError, AgentServiceError)):
        return error

    error_str = str(error)
    error_lower = error_str.lower()
    status_code = getattr(error, "status_code", None)

    if status_code == 429 or "rate limit" in error_lower:
        retry_after = None
        response = getattr(error, "response", None)
        headers = getattr(response, "headers", None)
        if headers is not None:
            header = headers.get("retry-after")
            if header:
                try:
                    retry_after = float(header)
                except ValueError:
                    retry_after = None
        return RateLimitError(f"{provider} rate limit exceeded", retry_after=retry_after)

    if status_code in (401, 403) or "unauthorized" in error_lower or "authentication" in error_lower:
        return AuthError(f"{provider} authentication failed: {error_str}")

    if status_code is not None:
        if status_code >= 500:
            return APIError(f"{provider} server error ({status_code})", status_code=status_code, retryable=True)
        return APIError(f"{provider} API error ({status_code})", status_code=status_code, retryable=False)

    if any(keyword in error_lower for keyword in ["connection", "timeout", "network"]):
        return NetworkError(f"{provider} network error: {error_str}")

    return APIError(f"{provider} error: {error_str}", retryable=False)
