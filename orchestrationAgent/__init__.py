"""OrchestrationAgent - Multi-agent task orchestration engine.

The orchestrator turns a user request into a direct answer, a single
delegated task, or a dependency graph of sub-tasks. Sub-agents run the
tasks concurrently under a bounded pool, each with its own tool scope and
context budget.

Key components:
- planning: task plan graph (validation, ready set, completion)
- agents: sub-agent runner, pool and tool scopes
- context: token estimation and summarization
- tools: local registry, MCP connection manager, composite router
- monitor: retry and intervention limits
- orchestrator: the coordinator driving a run
"""

__version__ = "1.0.0"
