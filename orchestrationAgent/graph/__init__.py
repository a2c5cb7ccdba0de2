"""LangGraph state machines for the orchestrator and its sub-agents."""

from .builder import build_agent_graph, build_orchestrator_graph
from .state import AgentLoopState, OrchestrationState

__all__ = ["AgentLoopState", "OrchestrationState", "build_agent_graph", "build_orchestrator_graph"]
