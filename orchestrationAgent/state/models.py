"""Data model for plans, sub-agents and run state."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from langchain_core.messages import BaseMessage

PlanStatus = Literal["executing", "completed", "failed"]
TaskStatus = Literal["pending", "in_progress", "completed", "failed", "cancelled"]
AgentStatus = Literal["initializing", "running", "completed", "failed", "cancelled"]
RunStatus = Literal["running", "completed", "failed"]
ToolCallStatus = Literal["pending", "success", "error"]
ReasoningType = Literal["thinking", "decision", "observation"]
ArtifactType = Literal["code", "data"]

AGENT_TYPES = ("general", "research", "coding", "scheduling", "productivity", "messaging")

TERMINAL_TASK_STATUSES = frozenset({"completed", "failed", "cancelled"})
TERMINAL_AGENT_STATUSES = frozenset({"completed", "failed", "cancelled"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class TaskNode:
    """One unit of work in a plan's dependency graph."""

    id: str
    plan_id: str
    description: str
    agent_type: str
    dependencies: List[str] = field(default_factory=list)
    status: TaskStatus = "pending"
    result: Any = None
    error: Optional[str] = None
    retry_count: int = 0
    assigned_agent_id: Optional[str] = None
    blocked_by: Optional[str] = None  # dependency whose failure cancelled this node
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES


@dataclass
class TaskPlan:
    id: str
    run_id: str
    reasoning: str = ""
    status: PlanStatus = "executing"
    node_ids: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class ToolCallRecord:
    id: str
    tool_id: str
    input: Dict[str, Any]
    status: ToolCallStatus = "pending"
    output: Any = None
    error: Optional[str] = None
    duration_ms: Optional[float] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class ReasoningStep:
    type: ReasoningType
    content: str
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class Artifact:
    type: ArtifactType
    name: str
    content: str
    language: Optional[str] = None
    data: Any = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class SubAgentState:
    """Observable state of one worker.

    Owned by its runner while executing; every mutation goes through the
    state store so it can be read while the worker is still running.
    """

    agent_id: str
    run_id: str
    task_node_id: Optional[str]
    agent_type: str
    task_description: str
    status: AgentStatus = "initializing"
    messages: List[BaseMessage] = field(default_factory=list)
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    reasoning_steps: List[ReasoningStep] = field(default_factory=list)
    artifacts: List[Artifact] = field(default_factory=list)
    total_tokens: int = 0
    total_cost: float = 0.0
    iterations: int = 0
    pending_guidance: Optional[str] = None
    result: Any = None
    error: Optional[str] = None
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


@dataclass
class OrchestratorState:
    """Run-level state shared by every worker of one run."""

    run_id: str
    user_input: str = ""
    status: RunStatus = "running"
    plan_id: Optional[str] = None
    active_agent_ids: List[str] = field(default_factory=list)
    loop_counters: Dict[str, int] = field(default_factory=dict)
    intervention_count: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    final_response: Optional[str] = None
    error: Optional[str] = None
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class ContextSummary:
    """Generated replacement for a prefix of a worker's message history."""

    content: str
    summarized_message_count: int
    original_token_count: int
    summary_token_count: int
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
