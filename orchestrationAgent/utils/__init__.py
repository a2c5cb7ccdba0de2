"""Shared utilities."""

from .error_handler import (
    AgentNotFoundError,
    ModelInvocationError,
    OrchestrationError,
    PlanNotFoundError,
    PlanValidationError,
    ServerConnectionError,
    ServerUnavailableError,
    TaskStateError,
    ToolExecutionError,
    UnknownToolError,
    describe_model_error,
    tool_error_boundary,
)
from .logging_utils import setup_logging

__all__ = [
    "AgentNotFoundError",
    "ModelInvocationError",
    "OrchestrationError",
    "PlanNotFoundError",
    "PlanValidationError",
    "ServerConnectionError",
    "ServerUnavailableError",
    "TaskStateError",
    "ToolExecutionError",
    "UnknownToolError",
    "describe_model_error",
    "setup_logging",
    "tool_error_boundary",
]
