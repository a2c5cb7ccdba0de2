"""Sub-agent pool manager.

Owns every live runner of this process: spawns one runner per ready task
node (bounded by ``max_concurrent_agents``), records terminal results back on
the task node, and exposes guidance injection and cancellation by agent id or
task node id.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from orchestrationAgent.agents.runner import SubAgentConfig, SubAgentResult, SubAgentRunner
from orchestrationAgent.config.settings import AgentSettings
from orchestrationAgent.context.budgeter import ContextBudgeter
from orchestrationAgent.events import (
    AgentSpawnedEvent,
    EventSink,
    NullEventSink,
    TaskCompletedEvent,
    TaskFailedEvent,
    TaskStartedEvent,
)
from orchestrationAgent.monitor.loop_detection import LoopMonitor
from orchestrationAgent.planning.graph import TaskPlanManager
from orchestrationAgent.providers.base import ModelProvider
from orchestrationAgent.state.models import SubAgentState, new_id
from orchestrationAgent.state.store import StateStore
from orchestrationAgent.tools.base import ToolInvoker
from orchestrationAgent.utils.error_handler import (
    AgentNotFoundError,
    OrchestrationError,
    TaskStateError,
)

LOGGER = logging.getLogger(__name__)


@dataclass
class AgentHandle:
    agent_id: str
    run_id: str
    agent_type: str
    task_node_id: Optional[str]
    runner: SubAgentRunner
    task: Optional[asyncio.Task] = None


@dataclass
class RunSummary:
    total_agents: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    agents: List[SubAgentState] = field(default_factory=list)


class SubAgentPool:
    def __init__(
        self,
        provider: ModelProvider,
        tools: ToolInvoker,
        store: StateStore,
        budgeter: ContextBudgeter,
        plans: TaskPlanManager,
        monitor: Optional[LoopMonitor] = None,
        settings: Optional[AgentSettings] = None,
    ):
        self.provider = provider
        self.tools = tools
        self.store = store
        self.budgeter = budgeter
        self.plans = plans
        self.monitor = monitor
        self.settings = settings or AgentSettings()

        self._agents: Dict[str, AgentHandle] = {}       # agent_id -> live handle
        self._by_task: Dict[str, str] = {}              # task_node_id -> agent_id
        self._results: Dict[str, Dict[str, SubAgentResult]] = {}  # run_id -> agent_id -> terminal result
        self._sinks: Dict[str, EventSink] = {}          # run_id -> event sink

    # ========== event routing ==========

    def register_run(self, run_id: str, sink: EventSink) -> None:
        self._sinks[run_id] = sink

    def unregister_run(self, run_id: str) -> None:
        """Forget the run's sink and the results of its finished agents."""
        self._sinks.pop(run_id, None)
        dropped = self._results.pop(run_id, {})
        if dropped:
            LOGGER.debug(f"Released {len(dropped)} agent results of run {run_id}")

    def _sink(self, run_id: str) -> EventSink:
        return self._sinks.get(run_id) or NullEventSink()

    # ========== capacity ==========

    @property
    def active_count(self) -> int:
        return len(self._agents)

    @property
    def available_slots(self) -> int:
        return max(self.settings.max_concurrent_agents - len(self._agents), 0)

    # ========== spawning ==========

    async def spawn_agent(self, config: SubAgentConfig) -> AgentHandle:
        """Start one runner; its task node (if any) moves to in_progress."""
        if not self.available_slots:
            raise OrchestrationError(
                f"Agent pool is at capacity ({self.settings.max_concurrent_agents} running)"
            )
        if config.task_node_id and config.task_node_id in self._by_task:
            raise TaskStateError(f"Task {config.task_node_id} already has a running agent")

        if config.task_node_id:
            await self.plans.start_task(config.task_node_id, config.agent_id)

        runner = SubAgentRunner(
            config,
            provider=self.provider,
            tools=self.tools,
            store=self.store,
            budgeter=self.budgeter,
            events=self._sink(config.run_id),
            settings=self.settings,
        )
        handle = AgentHandle(
            agent_id=config.agent_id,
            run_id=config.run_id,
            agent_type=config.agent_type,
            task_node_id=config.task_node_id,
            runner=runner,
        )

        await self.store.create_agent_state(runner.initial_state())
        await self.store.add_active_agent(config.run_id, config.agent_id)
        self._agents[handle.agent_id] = handle
        if handle.task_node_id:
            self._by_task[handle.task_node_id] = handle.agent_id

        sink = self._sink(config.run_id)
        sink.emit(AgentSpawnedEvent(
            run_id=config.run_id,
            agent_id=handle.agent_id,
            agent_type=handle.agent_type,
            task_node_id=handle.task_node_id,
        ))
        if handle.task_node_id:
            sink.emit(TaskStartedEvent(
                run_id=config.run_id,
                task_node_id=handle.task_node_id,
                agent_id=handle.agent_id,
                description=config.task_description,
            ))

        handle.task = asyncio.create_task(self._run_agent(handle), name=f"sub-agent-{handle.agent_id}")
        LOGGER.info(f"Spawned {handle.agent_type} agent {handle.agent_id} for task {handle.task_node_id}")
        return handle

    async def spawn_ready(
        self,
        run_id: str,
        plan_id: str,
        principal: str = "default",
        additional_tools: Iterable[str] = (),
    ) -> List[AgentHandle]:
        """Spawn runners for ready nodes until the pool is full."""
        ready = await self.plans.get_ready_tasks(plan_id)
        spawned = []
        for node in ready.ready:
            if not self.available_slots:
                LOGGER.debug(f"Pool full; {len(ready.ready) - len(spawned)} ready tasks wait for a slot")
                break
            if node.id in self._by_task:
                continue
            config = SubAgentConfig(
                agent_id=new_id(),
                run_id=run_id,
                agent_type=node.agent_type,
                task_description=node.description,
                task_node_id=node.id,
                principal=principal,
                upstream_context=await self.plans.get_upstream_context(node.id),
                additional_tools=list(additional_tools),
            )
            try:
                spawned.append(await self.spawn_agent(config))
            except TaskStateError as e:
                LOGGER.warning(f"Could not start task {node.id}: {e}")
        return spawned

    async def _run_agent(self, handle: AgentHandle) -> SubAgentResult:
        result: Optional[SubAgentResult] = None
        try:
            result = await handle.runner.run()
            return result
        finally:
            if result is None:
                result = SubAgentResult(
                    status="cancelled", success=False,
                    error="Agent task was cancelled", failure_kind="cancelled",
                    agent_id=handle.agent_id, task_node_id=handle.task_node_id,
                )
            self._results.setdefault(handle.run_id, {})[handle.agent_id] = result
            try:
                await self._record_result(handle, result)
            finally:
                self._agents.pop(handle.agent_id, None)
                if handle.task_node_id:
                    self._by_task.pop(handle.task_node_id, None)
                await self.store.remove_active_agent(handle.run_id, handle.agent_id)

    async def _record_result(self, handle: AgentHandle, result: SubAgentResult) -> None:
        node_id = handle.task_node_id
        if node_id is None:
            return
        sink = self._sink(handle.run_id)
        try:
            if result.status == "completed":
                await self.plans.complete_task(node_id, result.output)
                sink.emit(TaskCompletedEvent(run_id=handle.run_id, task_node_id=node_id, agent_id=handle.agent_id))
                return

            if result.status == "cancelled":
                await self.plans.cancel_task(node_id, result.error or "Cancelled")
                sink.emit(TaskFailedEvent(
                    run_id=handle.run_id, task_node_id=node_id, agent_id=handle.agent_id,
                    error=result.error or "Cancelled",
                ))
                return

            will_retry = await self._retry_if_allowed(handle, result)
            if not will_retry:
                await self.plans.fail_task(node_id, result.error or "Unknown error")
            sink.emit(TaskFailedEvent(
                run_id=handle.run_id, task_node_id=node_id, agent_id=handle.agent_id,
                error=result.error or "Unknown error", will_retry=will_retry,
            ))
        except TaskStateError as e:
            LOGGER.warning(f"Could not record result of agent {handle.agent_id} on task {node_id}: {e}")

    async def _retry_if_allowed(self, handle: AgentHandle, result: SubAgentResult) -> bool:
        if self.monitor is None:
            return False
        retryable = result.failure_kind == "error" or (
            result.failure_kind == "max_iterations" and self.monitor.settings.retry_on_max_iterations
        )
        if not retryable:
            return False
        check = await self.monitor.can_retry_task(handle.run_id, handle.task_node_id)
        if not check.allowed:
            LOGGER.info(check.reason)
            return False
        await self.monitor.record_task_retry(handle.run_id, handle.task_node_id)
        await self.plans.reset_for_retry(handle.task_node_id)
        return True

    # ========== control ==========

    def _resolve(self, agent_or_task_id: str) -> AgentHandle:
        agent_id = self._by_task.get(agent_or_task_id, agent_or_task_id)
        handle = self._agents.get(agent_id)
        if handle is None:
            raise AgentNotFoundError(f"No running agent for id: {agent_or_task_id}")
        return handle

    def get_agent(self, agent_or_task_id: str) -> Optional[AgentHandle]:
        try:
            return self._resolve(agent_or_task_id)
        except AgentNotFoundError:
            return None

    async def send_guidance(self, agent_or_task_id: str, guidance: str) -> str:
        """Queue guidance for a running agent; returns the agent id."""
        handle = self._resolve(agent_or_task_id)
        await handle.runner.inject_guidance(guidance)
        LOGGER.info(f"Guidance queued for agent {handle.agent_id}")
        return handle.agent_id

    def cancel_agent(self, agent_or_task_id: str, reason: str = "Cancelled by coordinator") -> bool:
        handle = self.get_agent(agent_or_task_id)
        if handle is None:
            return False
        handle.runner.cancel(reason)
        return True

    def cancel_all(self, run_id: Optional[str] = None, reason: str = "Run cancelled") -> int:
        handles = [h for h in self._agents.values() if run_id is None or h.run_id == run_id]
        for handle in handles:
            handle.runner.cancel(reason)
        return len(handles)

    # ========== waiting and queries ==========

    async def wait_for_agent(self, agent_id: str) -> SubAgentResult:
        handle = self._agents.get(agent_id)
        if handle is not None and handle.task is not None:
            await asyncio.wait({handle.task})
        result = self.get_result(agent_id)
        if result is None:
            raise AgentNotFoundError(f"Unknown agent: {agent_id}")
        return result

    async def wait_for_any(self, run_id: str, timeout: Optional[float] = None) -> List[SubAgentResult]:
        """Wait until at least one running agent of the run finishes."""
        tasks = {h.task: h.agent_id for h in self._agents.values() if h.run_id == run_id and h.task}
        if not tasks:
            return []
        done, _ = await asyncio.wait(set(tasks), timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finished = self._results.get(run_id, {})
        return [finished[tasks[task]] for task in done if tasks[task] in finished]

    async def wait_for_all(self, run_id: str) -> List[SubAgentResult]:
        results = []
        while self.has_active_agents(run_id):
            results.extend(await self.wait_for_any(run_id))
        return results

    def get_active_agents(self, run_id: Optional[str] = None) -> List[AgentHandle]:
        return [h for h in self._agents.values() if run_id is None or h.run_id == run_id]

    def has_active_agents(self, run_id: Optional[str] = None) -> bool:
        return bool(self.get_active_agents(run_id))

    def get_result(self, agent_id: str) -> Optional[SubAgentResult]:
        for finished in self._results.values():
            if agent_id in finished:
                return finished[agent_id]
        return None

    async def get_agent_state(self, agent_id: str) -> Optional[SubAgentState]:
        return await self.store.get_agent_state(agent_id)

    async def get_run_summary(self, run_id: str) -> RunSummary:
        states = await self.store.list_agent_states(run_id)
        summary = RunSummary(total_agents=len(states), agents=states)
        for state in states:
            summary.total_tokens += state.total_tokens
            summary.total_cost += state.total_cost
            if state.status in ("initializing", "running"):
                summary.active += 1
            elif state.status == "completed":
                summary.completed += 1
            elif state.status == "failed":
                summary.failed += 1
            else:
                summary.cancelled += 1
        return summary

    async def shutdown(self) -> None:
        """Cancel every runner task and wait for cleanup."""
        tasks = [h.task for h in self._agents.values() if h.task is not None]
        for handle in list(self._agents.values()):
            handle.runner.cancel("Pool shutting down")
        # Unstarted tasks must enter _run_agent, or their result is never recorded
        await asyncio.sleep(0)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
