"""Graph state for the orchestrator loop and the sub-agent loop.

Both graphs keep the conversation in ``messages`` (merged by
``add_messages``) and carry the flags their routing functions read. Routing
never looks outside the state; nodes copy whatever a decision needs into it.
"""

from __future__ import annotations

from typing import Annotated, List, Optional, TypedDict

from langgraph.graph import add_messages

from orchestrationAgent.providers.base import ToolCallRequest


class OrchestrationState(TypedDict, total=False):
    """State for the orchestrator graph."""

    # ========== Core Conversation State ==========
    messages: Annotated[list, add_messages]
    """Conversation history (HumanMessage, AIMessage, ToolMessage, plan updates)."""

    run_id: str
    """Run this graph invocation belongs to; nodes resolve the run context from it."""

    # ========== Loop Control ==========
    iterations: int
    """Model calls made so far (incremented by the planner node)."""

    max_iterations: int
    """Maximum model calls before the run fails."""

    tool_calls: List[ToolCallRequest]
    """Raw tool calls of the latest model turn; arguments may be malformed JSON."""

    # ========== Plan and Monitor ==========
    plan_pending: bool
    """An executing plan has work left, so the execute node should drive it."""

    monitor_decision: str
    """Latest LoopMonitor verdict: continue, request_guidance or abort."""

    final_response: Optional[str]
    """Set by respond_to_user; ends the run."""

    # ========== Context Management ==========
    needs_compression: bool
    """Conversation is over the summarization trigger; route through summarization."""


class AgentLoopState(TypedDict, total=False):
    """State for one sub-agent's call-model / call-tools loop."""

    messages: Annotated[list, add_messages]

    iterations: int
    max_iterations: int

    pending_calls: List[ToolCallRequest]
    """Tool calls of the latest model turn, executed by the tools node."""

    output: Optional[str]
    """Final answer: the content of a model turn without tool calls."""

    cancelled: bool
    """Cancellation was observed; every route ends the graph."""

    needs_compression: bool
