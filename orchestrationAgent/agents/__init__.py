"""Sub-agent execution."""

from .pool import AgentHandle, RunSummary, SubAgentPool
from .runner import SubAgentConfig, SubAgentResult, SubAgentRunner, extract_artifacts
from .scopes import AGENT_CAPABILITIES, AGENT_TOOL_SCOPES, ORCHESTRATOR_ONLY_TOOL_IDS, get_agent_tools

__all__ = [
    "AGENT_CAPABILITIES",
    "AGENT_TOOL_SCOPES",
    "AgentHandle",
    "ORCHESTRATOR_ONLY_TOOL_IDS",
    "RunSummary",
    "SubAgentConfig",
    "SubAgentPool",
    "SubAgentResult",
    "SubAgentRunner",
    "extract_artifacts",
    "get_agent_tools",
]
