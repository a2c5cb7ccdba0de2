"""Tool scopes and capability descriptions per agent type.

Sub-agents only see the tools of their specialization plus anything the
coordinator grants explicitly. Remote (namespaced) tools are visible to every
agent type. Orchestrator-only tools are never visible to a sub-agent.
"""

from typing import Dict, Iterable, List, Set

from orchestrationAgent.tools.base import ToolDefinition
from orchestrationAgent.tools.mcp.naming import is_remote_tool_id

ORCHESTRATOR_ONLY_TOOL_IDS = frozenset({
    "create_task_plan",
    "delegate_task",
    "modify_plan",
    "get_plan_status",
    "respond_to_user",
    "monitor_agent",
    "intervene_agent",
    "cancel_agent",
    "mark_task_failed",
    "store_memory",
})

AGENT_TOOL_SCOPES: Dict[str, List[str]] = {
    "general": ["recall", "get_current_time", "calculate", "web_search"],
    "research": ["recall", "web_search", "web_fetch", "web_scrape", "summarize", "extract_entities"],
    "coding": [
        "recall",
        "file_read", "file_write", "file_list", "file_delete",
        "code_execute", "code_analyze",
        "git_status", "git_diff", "git_commit",
    ],
    "scheduling": [
        "recall", "get_current_time", "calculate",
        "calendar_list", "calendar_get", "calendar_create", "calendar_update", "calendar_delete",
        "reminder_list", "reminder_create",
    ],
    "productivity": [
        "recall", "get_current_time",
        "task_list", "task_create", "task_update", "task_complete",
        "note_list", "note_create", "note_search",
        "document_create", "document_update",
    ],
    "messaging": [
        "recall",
        "email_list", "email_get", "email_send", "email_draft", "email_reply",
        "sms_send", "contact_search",
    ],
}

AGENT_CAPABILITIES: Dict[str, str] = {
    "general": """You are a general-purpose assistant capable of:
- Recalling information
- Performing calculations and getting the current time
- Basic web searches
Use this versatility for tasks that don't fit a specialized agent.""",
    "research": """You are a research specialist capable of:
- Searching the web and fetching pages
- Summarizing content and extracting facts
- Comparing multiple sources
Focus on gathering accurate, comprehensive information.""",
    "coding": """You are a coding specialist capable of:
- Reading and writing files
- Running and analyzing code
- Git operations
Work autonomously and verify your changes.""",
    "scheduling": """You are a scheduling specialist capable of:
- Managing calendar events and reminders
- Time calculations
Focus on efficient time management and avoiding conflicts.""",
    "productivity": """You are a productivity specialist capable of:
- Managing tasks and notes
- Working with documents
Focus on helping the user stay organized.""",
    "messaging": """You are a messaging specialist capable of:
- Drafting and sending email and SMS
- Looking up contacts
Focus on clear, professional communication.""",
}


def get_agent_tools(agent_type: str, additional_tools: Iterable[str] = ()) -> List[str]:
    """Base scope plus granted tools, de-duplicated, never orchestrator-only."""
    seen: Set[str] = set()
    result = []
    for tool_id in [*AGENT_TOOL_SCOPES.get(agent_type, []), *additional_tools]:
        if tool_id in seen or tool_id in ORCHESTRATOR_ONLY_TOOL_IDS:
            continue
        seen.add(tool_id)
        result.append(tool_id)
    return result


def can_agent_use_tool(agent_type: str, tool_id: str, additional_tools: Iterable[str] = ()) -> bool:
    if tool_id in ORCHESTRATOR_ONLY_TOOL_IDS:
        return False
    return is_remote_tool_id(tool_id) or tool_id in get_agent_tools(agent_type, additional_tools)


def filter_tools_for_agent(
    tools: Iterable[ToolDefinition],
    agent_type: str,
    additional_tools: Iterable[str] = (),
) -> List[ToolDefinition]:
    additional_tools = list(additional_tools)
    return [tool for tool in tools if can_agent_use_tool(agent_type, tool.id, additional_tools)]


def describe_agent_tool_access(agent_type: str, additional_tools: Iterable[str] = ()) -> str:
    tools = get_agent_tools(agent_type, additional_tools)
    return f"{AGENT_CAPABILITIES[agent_type]}\n\nAvailable tools: {', '.join(tools)}"
