"""Graph builders.

Orchestrator graph:

    START -> planner -> tools -> execute -> planner ...
                |         |  \-> summarization -> planner
                |         \----> end (respond_to_user, abort, iteration limit)
                \--------------> end (answer without tool calls)

Sub-agent graph:

    START -> agent -> tools -> agent ...
               |        \-> summarization -> agent
               \-> end (final answer or cancellation)

Nodes are passed in as async callables so the coordinator and the runner
keep their own state and persistence; the graphs only own control flow.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict

from langgraph.graph import END, START, StateGraph

from orchestrationAgent.graph.routing import (
    agent_route,
    agent_tools_route,
    execute_route,
    planner_route,
    tools_route,
)
from orchestrationAgent.graph.state import AgentLoopState, OrchestrationState

LOGGER = logging.getLogger(__name__)

Node = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


def build_orchestrator_graph(*, planner: Node, tools: Node, execute: Node, summarization: Node):
    """Build the orchestrator graph.

    Args:
        planner: Calls the orchestrator model once
        tools: Runs the requested tool calls and consults the loop monitor
        execute: Drives the current plan until it finishes or needs attention
        summarization: Compresses the conversation

    Returns:
        Compiled LangGraph application
    """
    graph = StateGraph(OrchestrationState)

    graph.add_node("planner", planner)
    graph.add_node("tools", tools)
    graph.add_node("execute", execute)
    graph.add_node("summarization", summarization)

    graph.add_edge(START, "planner")
    graph.add_conditional_edges(
        "planner",
        planner_route,
        {
            "tools": "tools",
            "end": END,
        },
    )
    graph.add_conditional_edges(
        "tools",
        tools_route,
        {
            "execute": "execute",
            "summarization": "summarization",
            "planner": "planner",
            "end": END,
        },
    )
    graph.add_conditional_edges(
        "execute",
        execute_route,
        {
            "summarization": "summarization",
            "planner": "planner",
            "end": END,
        },
    )
    graph.add_edge("summarization", "planner")

    LOGGER.debug("Orchestrator graph built")
    return graph.compile()


def build_agent_graph(*, agent: Node, tools: Node, summarization: Node):
    """Build one sub-agent's graph.

    Args:
        agent: Streams one model turn
        tools: Executes the turn's tool calls
        summarization: Compresses the agent's conversation

    Returns:
        Compiled LangGraph application
    """
    graph = StateGraph(AgentLoopState)

    graph.add_node("agent", agent)
    graph.add_node("tools", tools)
    graph.add_node("summarization", summarization)

    graph.add_edge(START, "agent")
    graph.add_conditional_edges(
        "agent",
        agent_route,
        {
            "tools": "tools",
            "end": END,
        },
    )
    graph.add_conditional_edges(
        "tools",
        agent_tools_route,
        {
            "summarization": "summarization",
            "agent": "agent",
            "end": END,
        },
    )
    graph.add_edge("summarization", "agent")

    return graph.compile()


__all__ = ["build_agent_graph", "build_orchestrator_graph"]
