"""Routing functions for the orchestrator and sub-agent graphs.

Decision order after tool execution is fixed: a final response or an abort
verdict ends the run first, then the iteration limit, then pending plan work,
then context compression.
"""

from __future__ import annotations

import logging
from typing import Literal

from orchestrationAgent.graph.state import AgentLoopState, OrchestrationState
from orchestrationAgent.utils.logging_utils import log_routing_decision

LOGGER = logging.getLogger(__name__)


# ========== orchestrator ==========

def planner_route(state: OrchestrationState) -> Literal["tools", "end"]:
    """Route after the planner node: run the requested tools or finish."""
    tool_calls = state.get("tool_calls") or []
    if tool_calls:
        names = ", ".join(call.name for call in tool_calls)
        log_routing_decision(LOGGER, "planner", "tools", f"Model requested {len(tool_calls)} tool call(s): {names}")
        return "tools"
    log_routing_decision(LOGGER, "planner", "end", "No tool calls, model answered directly")
    return "end"


def tools_route(state: OrchestrationState) -> Literal["execute", "summarization", "planner", "end"]:
    """Route after the tools node.

    Returns:
        "end": respond_to_user was called, the monitor aborted, or the iteration limit is reached
        "execute": a plan has work left
        "summarization": the conversation is over the compression trigger
        "planner": continue the feedback loop
    """
    if state.get("final_response") is not None:
        log_routing_decision(LOGGER, "tools", "end", "respond_to_user executed")
        return "end"
    if state.get("monitor_decision") == "abort":
        log_routing_decision(LOGGER, "tools", "end", "Loop monitor aborted the run")
        return "end"

    iterations = state.get("iterations", 0)
    max_iterations = state.get("max_iterations", 0)
    if max_iterations and iterations >= max_iterations:
        log_routing_decision(LOGGER, "tools", "end", f"Iteration limit reached ({iterations}/{max_iterations})")
        return "end"

    if state.get("plan_pending"):
        log_routing_decision(LOGGER, "tools", "execute", "Plan has work left")
        return "execute"
    if state.get("needs_compression"):
        log_routing_decision(LOGGER, "tools", "summarization", "Context over the compression trigger")
        return "summarization"
    log_routing_decision(LOGGER, "tools", "planner", "Tool results ready")
    return "planner"


def execute_route(state: OrchestrationState) -> Literal["summarization", "planner", "end"]:
    """Route after the execute node: the planner sees the plan update unless the run aborted."""
    if state.get("monitor_decision") == "abort":
        log_routing_decision(LOGGER, "execute", "end", "Loop monitor aborted the run")
        return "end"
    if state.get("needs_compression"):
        log_routing_decision(LOGGER, "execute", "summarization", "Context over the compression trigger")
        return "summarization"
    log_routing_decision(LOGGER, "execute", "planner", "Plan update ready")
    return "planner"


# ========== sub-agent ==========

def agent_route(state: AgentLoopState) -> Literal["tools", "end"]:
    if state.get("cancelled"):
        log_routing_decision(LOGGER, "agent", "end", "Agent cancelled")
        return "end"
    if state.get("pending_calls"):
        return "tools"
    log_routing_decision(LOGGER, "agent", "end", "Final answer produced")
    return "end"


def agent_tools_route(state: AgentLoopState) -> Literal["summarization", "agent", "end"]:
    if state.get("cancelled"):
        log_routing_decision(LOGGER, "tools", "end", "Agent cancelled")
        return "end"
    iterations = state.get("iterations", 0)
    max_iterations = state.get("max_iterations", 0)
    if max_iterations and iterations >= max_iterations:
        log_routing_decision(LOGGER, "tools", "end", f"Iteration limit reached ({iterations}/{max_iterations})")
        return "end"
    if state.get("needs_compression"):
        return "summarization"
    return "agent"


__all__ = ["agent_route", "agent_tools_route", "execute_route", "planner_route", "tools_route"]
