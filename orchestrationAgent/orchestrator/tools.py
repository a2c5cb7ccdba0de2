"""Tool schemas offered only to the orchestrator model."""

from typing import List

from orchestrationAgent.state.models import AGENT_TYPES
from orchestrationAgent.tools.base import ToolDefinition

_TASK_SCHEMA = {
    "type": "object",
    "properties": {
        "tempId": {"type": "string", "description": "Short id used to reference this task, e.g. 't1'"},
        "description": {"type": "string", "description": "Self-contained instructions for the agent"},
        "agentType": {"type": "string", "enum": list(AGENT_TYPES)},
        "dependencies": {
            "type": "array",
            "items": {"type": "string"},
            "description": "tempIds of tasks whose results this task needs",
        },
    },
    "required": ["tempId", "description", "agentType"],
}

CREATE_TASK_PLAN = ToolDefinition(
    id="create_task_plan",
    name="create_task_plan",
    description=(
        "Decompose the request into tasks with dependencies and execute them with specialized agents. "
        "Independent tasks run in parallel. Results arrive in a plan update once the plan finishes "
        "or a task needs your attention."
    ),
    parameters={
        "type": "object",
        "properties": {
            "reasoning": {"type": "string", "description": "Why the work is split this way"},
            "tasks": {"type": "array", "items": _TASK_SCHEMA, "minItems": 1},
        },
        "required": ["tasks"],
    },
)

DELEGATE_TASK = ToolDefinition(
    id="delegate_task",
    name="delegate_task",
    description="Execute one self-contained task with a specialized agent; its result arrives in a plan update.",
    parameters={
        "type": "object",
        "properties": {
            "description": {"type": "string"},
            "agentType": {"type": "string", "enum": list(AGENT_TYPES)},
            "instructions": {"type": "string", "description": "Optional extra instructions for the agent"},
        },
        "required": ["description"],
    },
)

MODIFY_PLAN = ToolDefinition(
    id="modify_plan",
    name="modify_plan",
    description=(
        "Add follow-up tasks to the current plan (dependencies may reference existing task ids) "
        "or remove pending tasks. Execution resumes after the change."
    ),
    parameters={
        "type": "object",
        "properties": {
            "addTasks": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "description": {"type": "string"},
                        "agentType": {"type": "string", "enum": list(AGENT_TYPES)},
                        "dependencies": {"type": "array", "items": {"type": "string"}},
                    },
                    "required": ["description"],
                },
            },
            "removeTaskIds": {"type": "array", "items": {"type": "string"}},
        },
    },
)

GET_PLAN_STATUS = ToolDefinition(
    id="get_plan_status",
    name="get_plan_status",
    description="Show the current plan, each task's status and result, and the run's health.",
    parameters={"type": "object", "properties": {}},
)

RESPOND_TO_USER = ToolDefinition(
    id="respond_to_user",
    name="respond_to_user",
    description="Send the final response to the user and end the run.",
    parameters={
        "type": "object",
        "properties": {"message": {"type": "string"}},
        "required": ["message"],
    },
)

MONITOR_AGENT = ToolDefinition(
    id="monitor_agent",
    name="monitor_agent",
    description=(
        "Inspect a sub-agent: its status, task, message and tool call counts, "
        "latest reasoning steps, tokens and cost."
    ),
    parameters={
        "type": "object",
        "properties": {"agentId": {"type": "string", "description": "Agent id (or the id of its task)"}},
        "required": ["agentId"],
    },
)

INTERVENE_AGENT = ToolDefinition(
    id="intervene_agent",
    name="intervene_agent",
    description=(
        "Steer a running sub-agent. 'guide' adds advice, 'redirect' changes its approach, "
        "'cancel' stops it. Every intervention counts against the run's intervention limit."
    ),
    parameters={
        "type": "object",
        "properties": {
            "agentId": {"type": "string"},
            "action": {"type": "string", "enum": ["guide", "redirect", "cancel"]},
            "reason": {"type": "string", "description": "Why the intervention is needed"},
            "guidance": {"type": "string", "description": "Instructions for the agent (guide and redirect)"},
        },
        "required": ["agentId", "action", "reason"],
    },
)

CANCEL_AGENT = ToolDefinition(
    id="cancel_agent",
    name="cancel_agent",
    description="Stop a running sub-agent. Its task is cancelled along with the tasks that depend on it.",
    parameters={
        "type": "object",
        "properties": {
            "agentId": {"type": "string"},
            "reason": {"type": "string"},
        },
        "required": ["agentId"],
    },
)

MARK_TASK_FAILED = ToolDefinition(
    id="mark_task_failed",
    name="mark_task_failed",
    description=(
        "Record a verdict on a task that is failing or stuck. With shouldRetry the task is queued again "
        "(optionally with a retryStrategy added to its instructions) while retries remain; otherwise "
        "it is failed and its dependents are cancelled."
    ),
    parameters={
        "type": "object",
        "properties": {
            "taskId": {"type": "string"},
            "error": {"type": "string", "description": "What went wrong"},
            "shouldRetry": {"type": "boolean"},
            "retryStrategy": {"type": "string", "description": "How the next attempt should differ"},
        },
        "required": ["taskId", "error"],
    },
)

ORCHESTRATOR_TOOLS: List[ToolDefinition] = [
    CREATE_TASK_PLAN,
    DELEGATE_TASK,
    MODIFY_PLAN,
    GET_PLAN_STATUS,
    RESPOND_TO_USER,
    MONITOR_AGENT,
    INTERVENE_AGENT,
    CANCEL_AGENT,
    MARK_TASK_FAILED,
]
