"""State store contract and the in-memory implementation.

Run-level counters are shared by concurrently running workers, so the store
exposes atomic increment and append operations instead of letting callers
read, modify and write back whole objects.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from langchain_core.messages import BaseMessage

from orchestrationAgent.state.models import (
    Artifact,
    OrchestratorState,
    ReasoningStep,
    SubAgentState,
    TaskNode,
    TaskPlan,
    ToolCallRecord,
    utcnow,
)
from orchestrationAgent.utils.error_handler import (
    AgentNotFoundError,
    OrchestrationError,
    PlanNotFoundError,
    TaskStateError,
)

LOGGER = logging.getLogger(__name__)


class StateStore(ABC):
    """Read/write operations the engine needs from persistence."""

    # Orchestrator state
    @abstractmethod
    async def create_orchestrator_state(self, state: OrchestratorState) -> None: ...

    @abstractmethod
    async def get_orchestrator_state(self, run_id: str) -> Optional[OrchestratorState]: ...

    @abstractmethod
    async def update_orchestrator_state(self, run_id: str, **fields: Any) -> OrchestratorState: ...

    @abstractmethod
    async def increment_run_totals(self, run_id: str, tokens: int, cost: float) -> None: ...

    @abstractmethod
    async def increment_loop_counter(self, run_id: str, task_node_id: str) -> int: ...

    @abstractmethod
    async def increment_interventions(self, run_id: str) -> int: ...

    @abstractmethod
    async def add_active_agent(self, run_id: str, agent_id: str) -> None: ...

    @abstractmethod
    async def remove_active_agent(self, run_id: str, agent_id: str) -> None: ...

    # Plans and nodes
    @abstractmethod
    async def create_plan(self, plan: TaskPlan, nodes: Iterable[TaskNode]) -> None: ...

    @abstractmethod
    async def get_plan(self, plan_id: str) -> Optional[TaskPlan]: ...

    @abstractmethod
    async def get_plan_by_run(self, run_id: str) -> Optional[TaskPlan]: ...

    @abstractmethod
    async def update_plan_status(self, plan_id: str, status: str) -> None: ...

    @abstractmethod
    async def add_node(self, plan_id: str, node: TaskNode) -> None: ...

    @abstractmethod
    async def get_node(self, node_id: str) -> Optional[TaskNode]: ...

    @abstractmethod
    async def get_nodes(self, plan_id: str) -> List[TaskNode]: ...

    @abstractmethod
    async def transition_node(self, node_id: str, allowed_from: Iterable[str], **fields: Any) -> TaskNode:
        """Update a node only if its current status is in ``allowed_from``."""

    @abstractmethod
    async def increment_node_retry(self, node_id: str) -> int: ...

    # Sub-agents
    @abstractmethod
    async def create_agent_state(self, state: SubAgentState) -> None: ...

    @abstractmethod
    async def get_agent_state(self, agent_id: str) -> Optional[SubAgentState]: ...

    @abstractmethod
    async def list_agent_states(self, run_id: str) -> List[SubAgentState]: ...

    @abstractmethod
    async def update_agent_state(self, agent_id: str, **fields: Any) -> None: ...

    @abstractmethod
    async def append_message(self, agent_id: str, message: BaseMessage) -> None: ...

    @abstractmethod
    async def replace_messages(self, agent_id: str, messages: List[BaseMessage]) -> None: ...

    @abstractmethod
    async def append_tool_call(self, agent_id: str, record: ToolCallRecord) -> None: ...

    @abstractmethod
    async def update_tool_call(self, agent_id: str, record: ToolCallRecord) -> None: ...

    @abstractmethod
    async def append_reasoning_step(self, agent_id: str, step: ReasoningStep) -> None: ...

    @abstractmethod
    async def append_artifact(self, agent_id: str, artifact: Artifact) -> None: ...

    @abstractmethod
    async def increment_agent_metrics(
        self, agent_id: str, tokens: int, cost: float, iterations: int = 0
    ) -> None: ...

    @abstractmethod
    async def set_pending_guidance(self, agent_id: str, guidance: str) -> None: ...

    @abstractmethod
    async def take_pending_guidance(self, agent_id: str) -> Optional[str]:
        """Return and clear the pending guidance slot in one step."""


class InMemoryStateStore(StateStore):
    """Process-local store; every mutation holds a single asyncio lock.

    Reads return deep copies so callers never alias stored objects.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._runs: Dict[str, OrchestratorState] = {}
        self._plans: Dict[str, TaskPlan] = {}
        self._plan_by_run: Dict[str, str] = {}
        self._nodes: Dict[str, TaskNode] = {}
        self._agents: Dict[str, SubAgentState] = {}

    # ========== helpers ==========

    def _run(self, run_id: str) -> OrchestratorState:
        state = self._runs.get(run_id)
        if state is None:
            raise OrchestrationError(f"Unknown run: {run_id}")
        return state

    def _agent(self, agent_id: str) -> SubAgentState:
        state = self._agents.get(agent_id)
        if state is None:
            raise AgentNotFoundError(f"Unknown sub-agent: {agent_id}")
        return state

    def _node(self, node_id: str) -> TaskNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise PlanNotFoundError(f"Unknown task node: {node_id}")
        return node

    @staticmethod
    def _apply(target: Any, fields: Dict[str, Any]) -> None:
        for name, value in fields.items():
            if not hasattr(target, name):
                raise AttributeError(f"{type(target).__name__} has no field '{name}'")
            setattr(target, name, value)

    # ========== orchestrator state ==========

    async def create_orchestrator_state(self, state: OrchestratorState) -> None:
        async with self._lock:
            if state.run_id in self._runs:
                raise OrchestrationError(f"Run already exists: {state.run_id}")
            self._runs[state.run_id] = copy.deepcopy(state)

    async def get_orchestrator_state(self, run_id: str) -> Optional[OrchestratorState]:
        async with self._lock:
            state = self._runs.get(run_id)
            return copy.deepcopy(state) if state else None

    async def update_orchestrator_state(self, run_id: str, **fields: Any) -> OrchestratorState:
        async with self._lock:
            state = self._run(run_id)
            self._apply(state, fields)
            return copy.deepcopy(state)

    async def increment_run_totals(self, run_id: str, tokens: int, cost: float) -> None:
        async with self._lock:
            state = self._run(run_id)
            state.total_tokens += tokens
            state.total_cost += cost

    async def increment_loop_counter(self, run_id: str, task_node_id: str) -> int:
        async with self._lock:
            counters = self._run(run_id).loop_counters
            counters[task_node_id] = counters.get(task_node_id, 0) + 1
            return counters[task_node_id]

    async def increment_interventions(self, run_id: str) -> int:
        async with self._lock:
            state = self._run(run_id)
            state.intervention_count += 1
            return state.intervention_count

    async def add_active_agent(self, run_id: str, agent_id: str) -> None:
        async with self._lock:
            active = self._run(run_id).active_agent_ids
            if agent_id not in active:
                active.append(agent_id)

    async def remove_active_agent(self, run_id: str, agent_id: str) -> None:
        async with self._lock:
            active = self._run(run_id).active_agent_ids
            if agent_id in active:
                active.remove(agent_id)

    # ========== plans ==========

    async def create_plan(self, plan: TaskPlan, nodes: Iterable[TaskNode]) -> None:
        nodes = list(nodes)
        async with self._lock:
            stored = copy.deepcopy(plan)
            stored.node_ids = [node.id for node in nodes]
            self._plans[plan.id] = stored
            self._plan_by_run[plan.run_id] = plan.id
            for node in nodes:
                self._nodes[node.id] = copy.deepcopy(node)
            if plan.run_id in self._runs:
                self._runs[plan.run_id].plan_id = plan.id

    async def get_plan(self, plan_id: str) -> Optional[TaskPlan]:
        async with self._lock:
            plan = self._plans.get(plan_id)
            return copy.deepcopy(plan) if plan else None

    async def get_plan_by_run(self, run_id: str) -> Optional[TaskPlan]:
        async with self._lock:
            plan_id = self._plan_by_run.get(run_id)
            return copy.deepcopy(self._plans[plan_id]) if plan_id else None

    async def update_plan_status(self, plan_id: str, status: str) -> None:
        async with self._lock:
            plan = self._plans.get(plan_id)
            if plan is None:
                raise PlanNotFoundError(f"Unknown plan: {plan_id}")
            plan.status = status
            plan.updated_at = utcnow()

    async def add_node(self, plan_id: str, node: TaskNode) -> None:
        async with self._lock:
            plan = self._plans.get(plan_id)
            if plan is None:
                raise PlanNotFoundError(f"Unknown plan: {plan_id}")
            self._nodes[node.id] = copy.deepcopy(node)
            plan.node_ids.append(node.id)
            plan.updated_at = utcnow()

    async def get_node(self, node_id: str) -> Optional[TaskNode]:
        async with self._lock:
            node = self._nodes.get(node_id)
            return copy.deepcopy(node) if node else None

    async def get_nodes(self, plan_id: str) -> List[TaskNode]:
        async with self._lock:
            plan = self._plans.get(plan_id)
            if plan is None:
                raise PlanNotFoundError(f"Unknown plan: {plan_id}")
            return [copy.deepcopy(self._nodes[node_id]) for node_id in plan.node_ids]

    async def transition_node(self, node_id: str, allowed_from: Iterable[str], **fields: Any) -> TaskNode:
        allowed = set(allowed_from)
        async with self._lock:
            node = self._node(node_id)
            if node.status not in allowed:
                raise TaskStateError(
                    f"Task {node_id} is {node.status}; expected one of {sorted(allowed)}"
                )
            self._apply(node, fields)
            return copy.deepcopy(node)

    async def increment_node_retry(self, node_id: str) -> int:
        async with self._lock:
            node = self._node(node_id)
            node.retry_count += 1
            return node.retry_count

    # ========== sub-agents ==========

    async def create_agent_state(self, state: SubAgentState) -> None:
        async with self._lock:
            self._agents[state.agent_id] = copy.deepcopy(state)

    async def get_agent_state(self, agent_id: str) -> Optional[SubAgentState]:
        async with self._lock:
            state = self._agents.get(agent_id)
            return copy.deepcopy(state) if state else None

    async def list_agent_states(self, run_id: str) -> List[SubAgentState]:
        async with self._lock:
            return [copy.deepcopy(s) for s in self._agents.values() if s.run_id == run_id]

    async def update_agent_state(self, agent_id: str, **fields: Any) -> None:
        async with self._lock:
            self._apply(self._agent(agent_id), fields)

    async def append_message(self, agent_id: str, message: BaseMessage) -> None:
        async with self._lock:
            self._agent(agent_id).messages.append(message)

    async def replace_messages(self, agent_id: str, messages: List[BaseMessage]) -> None:
        async with self._lock:
            self._agent(agent_id).messages = list(messages)

    async def append_tool_call(self, agent_id: str, record: ToolCallRecord) -> None:
        async with self._lock:
            self._agent(agent_id).tool_calls.append(copy.deepcopy(record))

    async def update_tool_call(self, agent_id: str, record: ToolCallRecord) -> None:
        async with self._lock:
            calls = self._agent(agent_id).tool_calls
            for index, existing in enumerate(calls):
                if existing.id == record.id:
                    calls[index] = copy.deepcopy(record)
                    return
            calls.append(copy.deepcopy(record))

    async def append_reasoning_step(self, agent_id: str, step: ReasoningStep) -> None:
        async with self._lock:
            self._agent(agent_id).reasoning_steps.append(step)

    async def append_artifact(self, agent_id: str, artifact: Artifact) -> None:
        async with self._lock:
            self._agent(agent_id).artifacts.append(artifact)

    async def increment_agent_metrics(
        self, agent_id: str, tokens: int, cost: float, iterations: int = 0
    ) -> None:
        async with self._lock:
            state = self._agent(agent_id)
            state.total_tokens += tokens
            state.total_cost += cost
            state.iterations += iterations

    async def set_pending_guidance(self, agent_id: str, guidance: str) -> None:
        async with self._lock:
            state = self._agent(agent_id)
            if state.pending_guidance:
                LOGGER.info(f"Replacing unconsumed guidance for agent {agent_id}")
            state.pending_guidance = guidance

    async def take_pending_guidance(self, agent_id: str) -> Optional[str]:
        async with self._lock:
            state = self._agent(agent_id)
            guidance, state.pending_guidance = state.pending_guidance, None
            return guidance
