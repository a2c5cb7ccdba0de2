"""Orchestrator coordinator: top-level entry point for a run.

The orchestrator model answers directly, delegates one task, or builds a
plan. The run is a LangGraph graph: the planner calls the model, the tools
node executes its tool calls and consults the loop monitor, and the execute
node drives the plan until it finishes or a failing task needs a decision.
Plan progress reaches the model as plan update messages.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    RemoveMessage,
    SystemMessage,
    ToolMessage,
)
from langchain_core.messages.tool import tool_call as make_tool_call
from langgraph.graph.message import REMOVE_ALL_MESSAGES

from orchestrationAgent.agents.pool import AgentHandle, SubAgentPool
from orchestrationAgent.agents.scopes import ORCHESTRATOR_ONLY_TOOL_IDS
from orchestrationAgent.config.settings import OrchestratorSettings
from orchestrationAgent.context.budgeter import ContextBudgeter
from orchestrationAgent.events import (
    EventSink,
    FinalResponseEvent,
    InterventionEvent,
    NullEventSink,
    OrchestratorStatusEvent,
    PlanCreatedEvent,
    RunErrorEvent,
    TaskFailedEvent,
)
from orchestrationAgent.graph import OrchestrationState, build_orchestrator_graph
from orchestrationAgent.monitor.loop_detection import LoopMonitor
from orchestrationAgent.planning.graph import (
    TaskInput,
    TaskPlanInput,
    TaskPlanManager,
    get_plan_structure,
)
from orchestrationAgent.providers.base import GenerateOptions, ModelProvider, ModelResponse, ToolCallRequest
from orchestrationAgent.state.models import OrchestratorState, new_id, utcnow
from orchestrationAgent.state.store import StateStore
from orchestrationAgent.tools.base import ToolDefinition, ToolInvoker
from orchestrationAgent.utils.error_handler import (
    AgentNotFoundError,
    OrchestrationError,
    PlanValidationError,
    TaskStateError,
)
from orchestrationAgent.utils.logging_utils import log_error, log_prompt

from .prompts import PLAN_UPDATE_PREFIX, build_orchestrator_prompt
from .tools import ORCHESTRATOR_TOOLS

LOGGER = logging.getLogger(__name__)

SLOT_POLL_INTERVAL = 0.1
PLAN_DONE_MESSAGE = "All tasks are complete. Please provide a summary response to the user."
ATTENTION_MESSAGE = (
    "Some tasks keep failing while others are still running. Decide how to handle them; "
    "execution resumes after your tool calls."
)
INTERVENTION_ACTIONS = ("guide", "redirect", "cancel")
REDIRECT_PREFIX = "Change of approach"
RECENT_REASONING_STEPS = 3


@dataclass
class OrchestratorRunResult:
    run_id: str
    status: str
    response: Optional[str] = None
    error: Optional[str] = None
    plan_id: Optional[str] = None
    total_tokens: int = 0
    total_cost: float = 0.0


@dataclass
class _RunContext:
    run_id: str
    principal: str
    events: EventSink
    system_prompt: str = ""
    tools: List[ToolDefinition] = field(default_factory=list)
    plan_id: Optional[str] = None
    final_response: Optional[str] = None
    escalated_nodes: Set[str] = field(default_factory=set)


class Orchestrator:
    def __init__(
        self,
        provider: ModelProvider,
        tools: ToolInvoker,
        store: StateStore,
        budgeter: ContextBudgeter,
        plans: TaskPlanManager,
        pool: SubAgentPool,
        monitor: LoopMonitor,
        settings: Optional[OrchestratorSettings] = None,
    ):
        self.provider = provider
        self.tools = tools
        self.store = store
        self.budgeter = budgeter
        self.plans = plans
        self.pool = pool
        self.monitor = monitor
        self.settings = settings or OrchestratorSettings()
        self._runs: Dict[str, _RunContext] = {}
        self._graph = build_orchestrator_graph(
            planner=self._planner_node,
            tools=self._tools_node,
            execute=self._execute_node,
            summarization=self._summarization_node,
        )

    # ========== entry point ==========

    async def execute_run(
        self,
        user_input: str,
        run_id: Optional[str] = None,
        principal: str = "default",
        events: Optional[EventSink] = None,
    ) -> OrchestratorRunResult:
        run = _RunContext(run_id=run_id or new_id(), principal=principal, events=events or NullEventSink())
        self._runs[run.run_id] = run
        self.pool.register_run(run.run_id, run.events)
        await self.store.create_orchestrator_state(OrchestratorState(run_id=run.run_id, user_input=user_input))
        self._status(run, "running", "Analyzing request")
        LOGGER.info(f"Run {run.run_id} started: {user_input[:100]}{'...' if len(user_input) > 100 else ''}")

        try:
            response = await self._run_graph(run, user_input)
        except Exception as e:
            return await self._fail_run(run, e)
        finally:
            self.pool.unregister_run(run.run_id)
            self._runs.pop(run.run_id, None)

        state = await self.store.update_orchestrator_state(
            run.run_id, status="completed", final_response=response, completed_at=utcnow(),
        )
        run.events.emit(FinalResponseEvent(run_id=run.run_id, content=response))
        self._status(run, "completed", "Run completed")
        LOGGER.info(f"Run {run.run_id} completed ({state.total_tokens} tokens, ${state.total_cost:.4f})")
        return OrchestratorRunResult(
            run_id=run.run_id,
            status="completed",
            response=response,
            plan_id=run.plan_id,
            total_tokens=state.total_tokens,
            total_cost=state.total_cost,
        )

    async def _fail_run(self, run: _RunContext, error: Exception) -> OrchestratorRunResult:
        log_error(LOGGER, error, f"run {run.run_id}")
        message = error.user_message if isinstance(error, OrchestrationError) else str(error) or type(error).__name__

        self.pool.cancel_all(run.run_id, reason=f"Run failed: {message}")
        await self.pool.wait_for_all(run.run_id)
        if run.plan_id:
            for node in await self.plans.get_nodes(run.plan_id):
                if node.status != "pending":
                    continue
                try:
                    await self.plans.cancel_task(node.id, "Run failed")
                except TaskStateError:
                    LOGGER.debug(f"Task {node.id} already settled")
            await self.store.update_plan_status(run.plan_id, "failed")

        state = await self.store.update_orchestrator_state(
            run.run_id, status="failed", error=message, completed_at=utcnow(),
        )
        run.events.emit(RunErrorEvent(run_id=run.run_id, error=message))
        self._status(run, "failed", message)
        return OrchestratorRunResult(
            run_id=run.run_id,
            status="failed",
            error=message,
            plan_id=run.plan_id,
            total_tokens=state.total_tokens,
            total_cost=state.total_cost,
        )

    def _status(self, run: _RunContext, status: str, message: str = "") -> None:
        run.events.emit(OrchestratorStatusEvent(run_id=run.run_id, status=status, message=message))

    # ========== graph ==========

    async def _available_tools(self, run: _RunContext) -> List[ToolDefinition]:
        tools = list(ORCHESTRATOR_TOOLS)
        if self.settings.enable_direct_execution:
            tools.extend(
                tool for tool in await self.tools.get_tools(run.principal)
                if tool.id not in ORCHESTRATOR_ONLY_TOOL_IDS
            )
        return tools

    async def _run_graph(self, run: _RunContext, user_input: str) -> str:
        run.system_prompt = build_orchestrator_prompt()
        log_prompt(LOGGER, "orchestrator", run.system_prompt)
        run.tools = await self._available_tools(run)

        max_iterations = self.settings.max_iterations
        state = await self._graph.ainvoke(
            {
                "messages": [HumanMessage(content=user_input)],
                "run_id": run.run_id,
                "iterations": 0,
                "max_iterations": max_iterations,
            },
            # planner, tools, execute and summarization at most once per iteration
            config={"recursion_limit": max_iterations * 4 + 5},
        )

        final_response = state.get("final_response")
        if final_response is None and state.get("monitor_decision") == "abort":
            raise OrchestrationError("Run aborted: intervention limit reached")

        if self.pool.has_active_agents(run.run_id):
            # the model answered while plan tasks were still running
            self.pool.cancel_all(run.run_id, reason="Run finished")
            await self.pool.wait_for_all(run.run_id)

        if final_response is not None:
            return final_response
        last = state["messages"][-1]
        if isinstance(last, AIMessage) and not last.tool_calls:
            return last.content if isinstance(last.content, str) else str(last.content)
        raise OrchestrationError(f"Orchestrator reached maximum iterations ({max_iterations})")

    async def _planner_node(self, state: OrchestrationState) -> Dict[str, Any]:
        """Call the orchestrator model once."""
        run = self._runs[state["run_id"]]
        response = await self.provider.generate(
            list(state["messages"]),
            GenerateOptions(system_prompt=run.system_prompt, tools=run.tools, temperature=self.settings.temperature),
        )
        await self._record_usage(run, response)
        message = AIMessage(
            content=response.content,
            tool_calls=[
                make_tool_call(name=call.name, args=self._safe_arguments(call), id=call.id)
                for call in response.tool_calls
            ],
        )
        return {
            "messages": [message],
            "iterations": state.get("iterations", 0) + 1,
            "tool_calls": list(response.tool_calls),
        }

    async def _tools_node(self, state: OrchestrationState) -> Dict[str, Any]:
        """Run the model's tool calls, then record what routing needs to know."""
        run = self._runs[state["run_id"]]
        results: List[BaseMessage] = []
        for call in state.get("tool_calls") or []:
            payload = await self._handle_tool_call(run, call)
            results.append(ToolMessage(
                content=json.dumps(payload, ensure_ascii=False, default=str),
                tool_call_id=call.id,
                name=call.name,
            ))
            if run.final_response is not None:
                break

        update: Dict[str, Any] = {"messages": results, "tool_calls": [], "final_response": run.final_response}
        update.update(await self._checkpoint(run, [*state["messages"], *results]))
        return update

    async def _execute_node(self, state: OrchestrationState) -> Dict[str, Any]:
        """Drive the plan and hand the outcome to the model as a plan update."""
        run = self._runs[state["run_id"]]
        report = await self._drive_plan(run, run.plan_id)
        if report is None:
            return {"monitor_decision": "abort", "plan_pending": False}

        update_message = SystemMessage(
            content=f"{PLAN_UPDATE_PREFIX}\n{json.dumps(report, ensure_ascii=False, default=str)}"
        )
        update: Dict[str, Any] = {"messages": [update_message]}
        update.update(await self._checkpoint(run, [*state["messages"], update_message]))
        update["plan_pending"] = False
        return update

    async def _summarization_node(self, state: OrchestrationState) -> Dict[str, Any]:
        run = self._runs[state["run_id"]]
        result = await self.budgeter.manage_context(
            state["messages"], self.provider.get_model(), system_prompt=run.system_prompt, tools=run.tools,
        )
        if not result.was_summarized:
            return {"needs_compression": False}
        return {
            "messages": [RemoveMessage(id=REMOVE_ALL_MESSAGES), *result.messages],
            "needs_compression": False,
        }

    async def _checkpoint(self, run: _RunContext, messages: List[BaseMessage]) -> Dict[str, Any]:
        """Monitor verdict, pending plan work and compression need after a step."""
        decision = await self.monitor.evaluate(run.run_id)
        plan_pending = False
        if run.plan_id is not None:
            plan = await self.plans.get_plan(run.plan_id)
            plan_pending = plan.status == "executing"
        return {
            "monitor_decision": decision,
            "plan_pending": plan_pending,
            "needs_compression": self.budgeter.would_trigger(
                messages, self.provider.get_model(), system_prompt=run.system_prompt, tools=run.tools,
            ),
        }

    async def _record_usage(self, run: _RunContext, response: ModelResponse) -> None:
        cost = self.provider.calculate_cost(response.usage.prompt_tokens, response.usage.completion_tokens)
        await self.store.increment_run_totals(run.run_id, response.usage.total_tokens, cost)

    @staticmethod
    def _safe_arguments(call: ToolCallRequest) -> Dict[str, Any]:
        try:
            return call.parse_arguments()
        except ValueError:
            return {}

    # ========== tool handlers ==========

    async def _handle_tool_call(self, run: _RunContext, call: ToolCallRequest) -> Dict[str, Any]:
        try:
            args = call.parse_arguments()
        except ValueError as e:
            return {"success": False, "error": f"Invalid JSON arguments: {e}"}

        handlers = {
            "create_task_plan": self._create_task_plan,
            "delegate_task": self._delegate_task,
            "modify_plan": self._modify_plan,
            "get_plan_status": self._get_plan_status,
            "respond_to_user": self._respond_to_user,
            "monitor_agent": self._monitor_agent,
            "intervene_agent": self._intervene_agent,
            "cancel_agent": self._cancel_agent,
            "mark_task_failed": self._mark_task_failed,
        }
        handler = handlers.get(call.name)
        if handler is not None:
            LOGGER.info(f"Orchestrator tool: {call.name}")
            return await handler(run, args)

        if call.name in {tool.id for tool in run.tools}:
            result = await self.tools.invoke(run.principal, call.name, args)
            return result.to_payload()

        return {"success": False, "error": f"Unknown tool: {call.name}"}

    async def _create_task_plan(self, run: _RunContext, args: Dict[str, Any]) -> Dict[str, Any]:
        return await self._start_plan(run, TaskPlanInput.from_dict(args))

    async def _delegate_task(self, run: _RunContext, args: Dict[str, Any]) -> Dict[str, Any]:
        description = str(args.get("description", ""))
        if args.get("instructions"):
            description += f"\n\nInstructions: {args['instructions']}"
        plan_input = TaskPlanInput(
            tasks=[TaskInput(
                temp_id="task_1",
                description=description,
                agent_type=str(args.get("agentType") or args.get("agent_type") or "general"),
            )],
            reasoning="Single delegated task",
        )
        return await self._start_plan(run, plan_input)

    async def _start_plan(self, run: _RunContext, plan_input: TaskPlanInput) -> Dict[str, Any]:
        """Create the plan; the execute node runs it once the tool calls are done."""
        try:
            plan, nodes, warnings = await self.plans.create_plan(run.run_id, plan_input)
        except PlanValidationError as e:
            return {"success": False, "errors": e.errors}

        run.plan_id = plan.id
        run.escalated_nodes.clear()
        await self.store.update_orchestrator_state(run.run_id, plan_id=plan.id)
        tasks = [
            {"id": node.id, "description": node.description, "agentType": node.agent_type,
             "dependencies": list(node.dependencies)}
            for node in nodes
        ]
        run.events.emit(PlanCreatedEvent(
            run_id=run.run_id,
            plan_id=plan.id,
            structure=get_plan_structure(nodes),
            tasks=tasks,
            warnings=warnings,
        ))
        self._status(run, "executing", f"Executing plan with {len(nodes)} tasks")
        outcome: Dict[str, Any] = {"success": True, "planId": plan.id, "structure": get_plan_structure(nodes),
                                   "tasks": tasks}
        if warnings:
            outcome["warnings"] = warnings
        return outcome

    async def _modify_plan(self, run: _RunContext, args: Dict[str, Any]) -> Dict[str, Any]:
        if run.plan_id is None:
            return {"success": False, "error": "No plan exists for this run"}

        decision = await self.monitor.evaluate(run.run_id)
        if decision == "abort":
            return {"success": False, "error": "Intervention limit reached; the plan can no longer be changed"}
        if decision == "request_guidance":
            await self._escalate(run, "Re-planning while the run is near its intervention limit")

        add_tasks = args.get("addTasks") or args.get("add_tasks") or []
        remove_ids = args.get("removeTaskIds") or args.get("remove_task_ids") or []
        errors, added, removed = [], [], []

        if add_tasks:
            await self.plans.reopen_plan(run.plan_id)
        for task in add_tasks:
            try:
                node = await self.plans.add_task(
                    run.plan_id,
                    description=str(task.get("description", "")),
                    agent_type=str(task.get("agentType") or task.get("agent_type") or "general"),
                    dependencies=[str(dep) for dep in task.get("dependencies") or []],
                )
                added.append(node.id)
            except (PlanValidationError, TaskStateError) as e:
                errors.append(str(e))
        for node_id in remove_ids:
            try:
                await self.plans.remove_task(str(node_id))
                removed.append(node_id)
            except OrchestrationError as e:
                errors.append(str(e))

        outcome: Dict[str, Any] = {"success": not errors, "added": added, "removed": removed}
        if errors:
            outcome["errors"] = errors
        return outcome

    async def _get_plan_status(self, run: _RunContext, args: Dict[str, Any]) -> Dict[str, Any]:
        if run.plan_id is None:
            return {"success": True, "plan": None}
        report = await self._plan_report(run, run.plan_id)
        health = await self.monitor.get_run_health(run.run_id)
        report["health"] = {"healthy": health.healthy, "warnings": health.warnings}
        return report

    async def _respond_to_user(self, run: _RunContext, args: Dict[str, Any]) -> Dict[str, Any]:
        run.final_response = str(args.get("message", ""))
        return {"success": True}

    # ========== intervention tools ==========

    def _active_agent(self, run: _RunContext, agent_or_task_id: str) -> Optional[AgentHandle]:
        """Running agent of this run, by agent id or task id."""
        handle = self.pool.get_agent(agent_or_task_id)
        if handle is None or handle.run_id != run.run_id:
            return None
        return handle

    async def _monitor_agent(self, run: _RunContext, args: Dict[str, Any]) -> Dict[str, Any]:
        ref = str(args.get("agentId") or args.get("agent_id") or "")
        handle = self._active_agent(run, ref)
        state = await self.store.get_agent_state(handle.agent_id if handle else ref)
        if state is None or state.run_id != run.run_id:
            return {"success": False, "error": f"Unknown agent: {ref}"}
        return {
            "success": True,
            "agentId": state.agent_id,
            "taskId": state.task_node_id,
            "agentType": state.agent_type,
            "status": state.status,
            "taskDescription": state.task_description,
            "messageCount": len(state.messages),
            "toolCallCount": len(state.tool_calls),
            "iterations": state.iterations,
            "recentReasoning": [
                {"type": step.type, "content": step.content}
                for step in state.reasoning_steps[-RECENT_REASONING_STEPS:]
            ],
            "totalTokens": state.total_tokens,
            "totalCost": state.total_cost,
            "error": state.error,
        }

    async def _intervene_agent(self, run: _RunContext, args: Dict[str, Any]) -> Dict[str, Any]:
        action = str(args.get("action") or "")
        if action not in INTERVENTION_ACTIONS:
            return {"success": False, "error": f"Invalid action '{action}'; expected guide, redirect or cancel"}
        guidance = args.get("guidance")
        if action != "cancel" and not guidance:
            return {"success": False, "error": f"Action '{action}' requires guidance"}
        return await self._intervene(
            run,
            str(args.get("agentId") or args.get("agent_id") or ""),
            action,
            str(args.get("reason") or action),
            str(guidance) if guidance else None,
        )

    async def _intervene(
        self,
        run: _RunContext,
        agent_or_task_id: str,
        action: str,
        reason: str,
        guidance: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Guide, redirect or cancel a running agent; each delivery counts as one intervention."""
        handle = self._active_agent(run, agent_or_task_id)
        if handle is None:
            return {"success": False, "error": f"No running agent for id: {agent_or_task_id}"}
        check = await self.monitor.can_intervene(run.run_id)
        if not check.allowed:
            LOGGER.warning(check.reason)
            return {"success": False, "error": check.reason, "limitReached": True}

        if action == "cancel":
            self.pool.cancel_agent(handle.agent_id, f"Cancelled by coordinator: {reason}")
        else:
            text = guidance if action == "guide" else f"{REDIRECT_PREFIX}: {guidance}"
            try:
                await self.pool.send_guidance(handle.agent_id, text)
            except AgentNotFoundError as e:
                return {"success": False, "error": str(e)}

        record = await self.monitor.record_intervention(run.run_id)
        run.events.emit(InterventionEvent(
            run_id=run.run_id,
            reason=reason,
            task_node_id=handle.task_node_id,
            agent_id=handle.agent_id,
            intervention_count=record.new_count,
            action=action,
            guidance=guidance,
        ))
        LOGGER.info(f"Intervention ({action}) on agent {handle.agent_id}: {reason}")
        return {
            "success": True,
            "agentId": handle.agent_id,
            "action": action,
            "interventionCount": record.new_count,
            "maxInterventions": record.max_interventions,
            "nearLimit": record.is_near_limit,
        }

    async def _cancel_agent(self, run: _RunContext, args: Dict[str, Any]) -> Dict[str, Any]:
        ref = str(args.get("agentId") or args.get("agent_id") or "")
        handle = self._active_agent(run, ref)
        if handle is None:
            return {"success": False, "error": f"No running agent for id: {ref}"}
        self.pool.cancel_agent(handle.agent_id, str(args.get("reason") or "Cancelled by coordinator"))
        result = await self.pool.wait_for_agent(handle.agent_id)
        return {"success": True, "agentId": handle.agent_id, "taskId": handle.task_node_id, "status": result.status}

    async def _mark_task_failed(self, run: _RunContext, args: Dict[str, Any]) -> Dict[str, Any]:
        """Coordinator verdict on a task: retry it while retries remain, else fail it."""
        task_id = str(args.get("taskId") or args.get("task_id") or "")
        error = str(args.get("error") or "Marked failed by coordinator")
        strategy = args.get("retryStrategy") or args.get("retry_strategy")
        try:
            node = await self.plans.get_node(task_id)
        except OrchestrationError as e:
            return {"success": False, "error": str(e)}
        if node.plan_id != run.plan_id:
            return {"success": False, "error": f"Task {task_id} is not part of the current plan"}

        handle = self._active_agent(run, task_id)
        if handle is not None:
            self.pool.cancel_agent(handle.agent_id, f"Marked failed: {error}")
            await self.pool.wait_for_agent(handle.agent_id)
            node = await self.plans.get_node(task_id)
        if node.status == "completed":
            return {"success": False, "error": f"Task {task_id} already completed"}

        try:
            if args.get("shouldRetry") or args.get("should_retry"):
                if node.status == "pending":
                    return {"success": False, "error": f"Task {task_id} is already waiting to run"}
                check = await self.monitor.can_retry_task(run.run_id, task_id)
                if check.allowed:
                    record = await self.monitor.record_task_retry(run.run_id, task_id)
                    await self.plans.retry_task(task_id, str(strategy) if strategy else None)
                    run.escalated_nodes.discard(task_id)
                    run.events.emit(TaskFailedEvent(
                        run_id=run.run_id, task_node_id=task_id, error=error, will_retry=True,
                    ))
                    return {
                        "success": True,
                        "taskId": task_id,
                        "action": "retry",
                        "retryCount": record.new_count,
                        "maxRetries": record.max_retries,
                    }
                error = f"{error} (max retries reached)"
            await self.plans.mark_failed(task_id, error)
            run.escalated_nodes.add(task_id)
        except TaskStateError as e:
            return {"success": False, "error": str(e)}

        run.events.emit(TaskFailedEvent(run_id=run.run_id, task_node_id=task_id, error=error))
        return {"success": True, "taskId": task_id, "action": "failed", "error": error}

    # ========== plan driving ==========

    async def _drive_plan(self, run: _RunContext, plan_id: str) -> Optional[Dict[str, Any]]:
        """Schedule ready nodes until the plan completes or a failing task needs a decision.

        Returns the plan report; it carries an ``attention`` list when control
        goes back to the model while other tasks are still running. Returns
        None when the loop monitor aborts the run.
        """
        attention: List[Dict[str, Any]] = []
        while True:
            if await self.monitor.evaluate(run.run_id) == "abort":
                self.pool.cancel_all(run.run_id, reason="Intervention limit reached")
                await self.pool.wait_for_all(run.run_id)
                return None

            await self.pool.spawn_ready(run.run_id, plan_id, principal=run.principal)
            attention.extend(await self._collect_attention(run, plan_id))

            completion = await self.plans.is_plan_complete(plan_id)
            if completion.complete:
                break

            if attention:
                self._status(run, "awaiting_decision", f"{len(attention)} task(s) need attention")
                report = await self._plan_report(run, plan_id)
                report["attention"] = attention
                report["message"] = ATTENTION_MESSAGE
                return report

            if not self.pool.has_active_agents(run.run_id):
                ready = await self.plans.get_ready_tasks(plan_id)
                if ready.ready:
                    # pool slots are held by other runs
                    await asyncio.sleep(SLOT_POLL_INTERVAL)
                    continue
                for node in ready.waiting:
                    try:
                        await self.plans.cancel_task(node.id, "Plan cannot make progress")
                    except TaskStateError:
                        LOGGER.debug(f"Task {node.id} already settled")
                continue

            await self.pool.wait_for_any(run.run_id)

        completion = await self.plans.finalize_plan(plan_id)
        self._status(run, "summarizing" if completion.success else "plan_failed",
                     f"{completion.completed} tasks completed, {completion.failed} failed")
        report = await self._plan_report(run, plan_id)
        report["message"] = PLAN_DONE_MESSAGE
        if attention:
            report["attention"] = attention
        return report

    async def _collect_attention(self, run: _RunContext, plan_id: str) -> List[Dict[str, Any]]:
        """Escalate failed nodes the loop monitor wants a decision on, once per node."""
        items = []
        for node in await self.plans.get_nodes(plan_id):
            if node.status != "failed" or node.id in run.escalated_nodes:
                continue
            if await self.monitor.evaluate(run.run_id, node.id) != "request_guidance":
                continue
            run.escalated_nodes.add(node.id)
            await self._escalate(
                run, f"Task keeps failing: {node.error}", task_node_id=node.id, agent_id=node.assigned_agent_id,
            )
            items.append({"taskId": node.id, "agentId": node.assigned_agent_id, "error": node.error})
        return items

    async def _escalate(
        self,
        run: _RunContext,
        reason: str,
        task_node_id: Optional[str] = None,
        agent_id: Optional[str] = None,
    ) -> None:
        state = await self.store.get_orchestrator_state(run.run_id)
        LOGGER.warning(f"Run {run.run_id} escalation: {reason}")
        run.events.emit(InterventionEvent(
            run_id=run.run_id,
            reason=reason,
            task_node_id=task_node_id,
            agent_id=agent_id,
            intervention_count=state.intervention_count if state else 0,
        ))

    async def _plan_report(self, run: _RunContext, plan_id: str) -> Dict[str, Any]:
        completion = await self.plans.is_plan_complete(plan_id)
        nodes = await self.plans.get_nodes(plan_id)
        return {
            "success": completion.success,
            "complete": completion.complete,
            "summary": await self.plans.get_plan_summary(plan_id),
            "tasks": [
                {
                    "id": node.id,
                    "description": node.description,
                    "agentType": node.agent_type,
                    "status": node.status,
                    "agentId": node.assigned_agent_id,
                    "result": node.result,
                    "error": node.error,
                    "retries": node.retry_count,
                }
                for node in nodes
            ],
        }

    # ========== external control ==========

    async def send_guidance(self, run_id: str, agent_or_task_id: str, guidance: str) -> bool:
        """Inject guidance into a running agent; counts as one intervention."""
        run = self._runs.get(run_id)
        if run is None:
            return False
        outcome = await self._intervene(run, agent_or_task_id, "guide", f"Guidance: {guidance}", guidance)
        if not outcome["success"]:
            LOGGER.warning(outcome["error"])
        return outcome["success"]

    async def cancel_task(self, run_id: str, task_node_id: str, reason: str = "Cancelled by user") -> bool:
        if run_id not in self._runs:
            return False
        if self.pool.cancel_agent(task_node_id, reason):
            return True
        try:
            await self.plans.cancel_task(task_node_id, reason)
        except OrchestrationError:
            return False
        return True
