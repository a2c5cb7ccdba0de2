"""Run state model and storage."""

from .models import (
    Artifact,
    ContextSummary,
    OrchestratorState,
    ReasoningStep,
    SubAgentState,
    TaskNode,
    TaskPlan,
    ToolCallRecord,
)
from .store import InMemoryStateStore, StateStore

__all__ = [
    "Artifact",
    "ContextSummary",
    "InMemoryStateStore",
    "OrchestratorState",
    "ReasoningStep",
    "StateStore",
    "SubAgentState",
    "TaskNode",
    "TaskPlan",
    "ToolCallRecord",
]
