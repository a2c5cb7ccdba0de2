"""Exception hierarchy and error normalization helpers."""

from __future__ import annotations

import functools
import inspect
import logging
from typing import Any, Callable, List, Optional

LOGGER = logging.getLogger(__name__)


class OrchestrationError(Exception):
    """Base exception for orchestration engine errors."""

    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message


class PlanValidationError(OrchestrationError):
    """Plan input rejected before persistence."""

    def __init__(self, errors: List[str], warnings: Optional[List[str]] = None):
        super().__init__(
            f"Invalid task plan: {'; '.join(errors)}",
            user_message="The task plan is invalid: " + "; ".join(errors),
        )
        self.errors = list(errors)
        self.warnings = list(warnings or [])


class PlanNotFoundError(OrchestrationError):
    """Plan or task node does not exist."""
    pass


class TaskStateError(OrchestrationError):
    """Illegal task node status transition."""
    pass


class AgentNotFoundError(OrchestrationError):
    """No sub-agent with the given id."""
    pass


class ToolExecutionError(OrchestrationError):
    """Error during tool execution."""
    pass


class UnknownToolError(ToolExecutionError):
    """Tool id cannot be parsed or names an unknown endpoint."""
    pass


class ServerConnectionError(OrchestrationError):
    """Transport-level failure talking to a tool provider endpoint."""
    pass


class ServerUnavailableError(ServerConnectionError):
    """Endpoint exhausted its retry budget and waits for an explicit reconnect."""
    pass


class ModelInvocationError(OrchestrationError):
    """Error during model invocation."""
    pass


def tool_error_boundary(tool_id: str):
    """Decorator that turns a tool callable's exceptions into a failed ToolResult.

    Works with sync and async callables. Successful return values are wrapped
    into a successful ToolResult unless they already are one.

    Example:
        @tool_error_boundary("now")
        async def invoke_now(args):
            ...
    """
    from orchestrationAgent.tools.base import ToolResult

    def decorator(func: Callable) -> Callable:
        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> ToolResult:
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    LOGGER.warning(f"Tool {tool_id} failed: {e}")
                    return ToolResult.fail(str(e) or type(e).__name__)
                return result if isinstance(result, ToolResult) else ToolResult.ok(result)
            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> ToolResult:
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                LOGGER.warning(f"Tool {tool_id} failed: {e}")
                return ToolResult.fail(str(e) or type(e).__name__)
            return result if isinstance(result, ToolResult) else ToolResult.ok(result)
        return sync_wrapper
    return decorator


def describe_model_error(error: BaseException) -> str:
    """Convert model invocation errors to human-readable messages."""
    error_str = str(error).lower()

    if "rate_limit" in error_str or "429" in error_str:
        return "Model provider rate limit reached, please retry later"

    if "timeout" in error_str or "timed out" in error_str:
        return "Model response timed out"

    if "context_length" in error_str or "maximum context" in error_str:
        return "Conversation exceeds the model context window"

    if "invalid_api_key" in error_str or "authentication" in error_str:
        return "Model provider rejected the API key"

    if "quota" in error_str or "insufficient" in error_str:
        return "Model provider quota exhausted"

    return f"Model service unavailable: {str(error)}"
