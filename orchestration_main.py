#!/usr/bin/env python3
"""OrchestrationAgent - Main entry point.

Usage:
    python orchestration_main.py "Research X and write a summary"
    python orchestration_main.py            # interactive mode

The orchestrator answers simple requests directly and decomposes complex
ones into a task plan executed by specialized sub-agents. Progress events
are printed as they arrive.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to sys.path for imports
project_root = Path(__file__).parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from orchestrationAgent.config.settings import get_settings
from orchestrationAgent.events import (
    AgentSpawnedEvent,
    ErrorEvent,
    Event,
    EventChannel,
    FinalResponseEvent,
    InterventionEvent,
    OrchestratorStatusEvent,
    PlanCreatedEvent,
    RunErrorEvent,
    TaskCompletedEvent,
    TaskFailedEvent,
    ToolCallEvent,
)
from orchestrationAgent.runtime.app import build_model_provider, build_orchestration_app
from orchestrationAgent.utils.logging_utils import setup_logging

LOGGER = logging.getLogger("orchestrationAgent.main")


def format_event(event: Event) -> str:
    """Render an event as one console line; empty string for events not shown."""
    if isinstance(event, OrchestratorStatusEvent):
        return f"[status] {event.status}: {event.message}" if event.message else f"[status] {event.status}"
    if isinstance(event, PlanCreatedEvent):
        lines = [f"[plan] {len(event.tasks)} tasks ({event.structure})"]
        lines.extend(f"  - [{task['agentType']}] {task['description']}" for task in event.tasks)
        lines.extend(f"  ! {warning}" for warning in event.warnings)
        return "\n".join(lines)
    if isinstance(event, AgentSpawnedEvent):
        return f"[agent] {event.agent_type} agent {event.agent_id[:8]} started"
    if isinstance(event, ToolCallEvent):
        return f"[tool] {event.agent_id[:8]} -> {event.tool_id}"
    if isinstance(event, TaskCompletedEvent):
        return f"[task] {event.task_node_id[:8]} completed"
    if isinstance(event, TaskFailedEvent):
        suffix = " (retrying)" if event.will_retry else ""
        return f"[task] {event.task_node_id[:8]} failed: {event.error}{suffix}"
    if isinstance(event, ErrorEvent):
        return f"[agent] {event.agent_id[:8]} error ({event.failure_kind}): {event.error}"
    if isinstance(event, InterventionEvent):
        return f"[intervention] {event.reason}"
    if isinstance(event, RunErrorEvent):
        return f"[error] {event.error}"
    if isinstance(event, FinalResponseEvent):
        return f"\n{event.content}\n"
    return ""


async def print_events(channel: EventChannel) -> None:
    async for event in channel:
        line = format_event(event)
        if line:
            print(line, flush=True)


async def run_once(app, user_input: str) -> int:
    channel = EventChannel()
    printer = asyncio.create_task(print_events(channel))
    try:
        result = await app.orchestrator.execute_run(user_input, events=channel)
    finally:
        channel.close()
        await printer
    print(f"[usage] {result.total_tokens} tokens, ${result.total_cost:.4f}")
    return 0 if result.status == "completed" else 1


async def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Multi-agent task orchestrator")
    parser.add_argument("request", nargs="*", help="Request to run; interactive mode when omitted")
    parser.add_argument("--model", help="Override MODEL_ID")
    parser.add_argument("--mcp-config", help="Path to the MCP servers YAML file")
    args = parser.parse_args(argv)

    settings = get_settings()
    if args.mcp_config:
        settings.mcp.config_path = args.mcp_config
    setup_logging(settings.observability.log_level, settings.observability.log_dir)

    provider = build_model_provider(settings, args.model)
    summary_provider = (
        build_model_provider(settings, settings.models.summary_model_id)
        if settings.models.summary_model_id else None
    )
    app = build_orchestration_app(provider, settings, summary_provider=summary_provider)

    try:
        if args.request:
            return await run_once(app, " ".join(args.request))

        print("OrchestrationAgent - type a request, or /quit to exit")
        loop = asyncio.get_running_loop()
        while True:
            user_input = (await loop.run_in_executor(None, lambda: input("> "))).strip()
            if not user_input:
                continue
            if user_input in ("/quit", "/exit"):
                return 0
            await run_once(app, user_input)
    except (KeyboardInterrupt, EOFError):
        print()
        return 0
    finally:
        await app.shutdown()


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
