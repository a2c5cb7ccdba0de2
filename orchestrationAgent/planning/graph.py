"""Task plan graph manager.

Validates a flat task list with temporary ids into a dependency DAG, persists
it, and answers scheduling queries (ready set, upstream context, completion).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from orchestrationAgent.state.models import (
    AGENT_TYPES,
    TaskNode,
    TaskPlan,
    new_id,
    utcnow,
)
from orchestrationAgent.state.store import StateStore
from orchestrationAgent.utils.error_handler import (
    PlanNotFoundError,
    PlanValidationError,
    TaskStateError,
)

LOGGER = logging.getLogger(__name__)

MAX_RECOMMENDED_TASKS = 10
MAX_RECOMMENDED_ROOTS = 5

_UNVISITED, _IN_PROGRESS, _DONE = 0, 1, 2


@dataclass
class TaskInput:
    temp_id: str
    description: str
    agent_type: str = "general"
    dependencies: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskInput":
        return cls(
            temp_id=str(data.get("temp_id") or data.get("tempId") or data.get("id") or ""),
            description=str(data.get("description", "")),
            agent_type=str(data.get("agent_type") or data.get("agentType") or "general"),
            dependencies=[str(dep) for dep in data.get("dependencies") or []],
        )


@dataclass
class TaskPlanInput:
    tasks: List[TaskInput]
    reasoning: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskPlanInput":
        return cls(
            tasks=[TaskInput.from_dict(task) for task in data.get("tasks") or []],
            reasoning=str(data.get("reasoning", "")),
        )


@dataclass
class PlanValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class ReadyTasks:
    ready: List[TaskNode] = field(default_factory=list)
    waiting: List[TaskNode] = field(default_factory=list)
    in_progress: List[TaskNode] = field(default_factory=list)
    completed: List[TaskNode] = field(default_factory=list)
    failed: List[TaskNode] = field(default_factory=list)


@dataclass(frozen=True)
class PlanCompletion:
    complete: bool
    success: bool
    completed: int
    failed: int
    pending: int


def has_cycle(graph: Dict[str, Sequence[str]]) -> bool:
    """Three-color DFS: an edge into an in-progress node closes a cycle.

    Uses an explicit stack so long dependency chains cannot exhaust the
    interpreter's recursion limit.
    """
    color = {node: _UNVISITED for node in graph}

    for root in graph:
        if color[root] != _UNVISITED:
            continue
        color[root] = _IN_PROGRESS
        stack = [(root, iter(graph.get(root, ())))]
        while stack:
            node, deps = stack[-1]
            for dep in deps:
                state = color.get(dep, _DONE)
                if state == _IN_PROGRESS:
                    return True
                if state == _UNVISITED:
                    color[dep] = _IN_PROGRESS
                    stack.append((dep, iter(graph.get(dep, ()))))
                    break
            else:
                color[node] = _DONE
                stack.pop()
    return False


def validate_plan_input(plan_input: TaskPlanInput) -> PlanValidationResult:
    errors: List[str] = []
    warnings: List[str] = []
    tasks = plan_input.tasks

    if not tasks:
        return PlanValidationResult(valid=False, errors=["Plan must have at least one task"])

    seen = set()
    for task in tasks:
        if not task.temp_id:
            errors.append(f"Task '{task.description[:40]}' has no tempId")
        elif task.temp_id in seen:
            errors.append(f"Duplicate tempId: {task.temp_id}")
        seen.add(task.temp_id)

        if not task.description.strip():
            errors.append(f"Task {task.temp_id} has an empty description")
        if task.agent_type not in AGENT_TYPES:
            errors.append(
                f"Invalid agent type '{task.agent_type}' for task {task.temp_id} "
                f"(expected one of: {', '.join(AGENT_TYPES)})"
            )

    for task in tasks:
        for dep in task.dependencies:
            if dep == task.temp_id:
                errors.append(f"Task {task.temp_id} depends on itself")
            elif dep not in seen:
                errors.append(f"Unknown dependency '{dep}' in task {task.temp_id}")

    graph = {task.temp_id: [d for d in task.dependencies if d in seen] for task in tasks if task.temp_id}
    if has_cycle(graph):
        errors.append("Plan contains a cycle - not a valid DAG")

    if len(tasks) > MAX_RECOMMENDED_TASKS:
        warnings.append(f"Plan has {len(tasks)} tasks; consider fewer, larger tasks")
    roots = [task for task in tasks if not task.dependencies]
    if len(roots) > MAX_RECOMMENDED_ROOTS:
        warnings.append(f"Plan has {len(roots)} tasks without dependencies running in parallel")

    return PlanValidationResult(valid=not errors, errors=errors, warnings=warnings)


def get_plan_structure(nodes: Sequence[TaskNode]) -> str:
    """Return "graph" for fan-in, fan-out or multiple roots, else "sequential"."""
    dependents: Dict[str, int] = {}
    roots = 0
    for node in nodes:
        if not node.dependencies:
            roots += 1
        if len(node.dependencies) > 1:
            return "graph"
        for dep in node.dependencies:
            dependents[dep] = dependents.get(dep, 0) + 1
    if roots > 1 or any(count > 1 for count in dependents.values()):
        return "graph"
    return "sequential"


class TaskPlanManager:
    """Creates plans and moves their task nodes through their lifecycle."""

    def __init__(self, store: StateStore):
        self.store = store

    # ========== creation ==========

    async def create_plan(self, run_id: str, plan_input: TaskPlanInput) -> Tuple[TaskPlan, List[TaskNode], List[str]]:
        """Validate and persist a plan.

        Returns:
            (plan, nodes, warnings)

        Raises:
            PlanValidationError: when the input is rejected; nothing is persisted
        """
        result = validate_plan_input(plan_input)
        if not result.valid:
            LOGGER.warning(f"Rejected plan for run {run_id}: {result.errors}")
            raise PlanValidationError(result.errors, result.warnings)

        existing = await self.store.get_plan_by_run(run_id)
        if existing is not None and existing.status == "executing":
            raise PlanValidationError([f"Run {run_id} already has an executing plan"])

        plan = TaskPlan(id=new_id(), run_id=run_id, reasoning=plan_input.reasoning)
        id_map = {task.temp_id: new_id() for task in plan_input.tasks}
        nodes = [
            TaskNode(
                id=id_map[task.temp_id],
                plan_id=plan.id,
                description=task.description,
                agent_type=task.agent_type,
                dependencies=[id_map[dep] for dep in task.dependencies],
            )
            for task in plan_input.tasks
        ]

        await self.store.create_plan(plan, nodes)
        plan.node_ids = [node.id for node in nodes]
        LOGGER.info(f"Created plan {plan.id} for run {run_id}: {len(nodes)} tasks ({get_plan_structure(nodes)})")
        return plan, nodes, result.warnings

    async def get_plan(self, plan_id: str) -> TaskPlan:
        plan = await self.store.get_plan(plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Unknown plan: {plan_id}")
        return plan

    async def get_plan_by_run(self, run_id: str) -> Optional[TaskPlan]:
        return await self.store.get_plan_by_run(run_id)

    async def get_nodes(self, plan_id: str) -> List[TaskNode]:
        return await self.store.get_nodes(plan_id)

    async def get_node(self, node_id: str) -> TaskNode:
        node = await self.store.get_node(node_id)
        if node is None:
            raise PlanNotFoundError(f"Unknown task node: {node_id}")
        return node

    # ========== scheduling queries ==========

    async def get_ready_tasks(self, plan_id: str) -> ReadyTasks:
        nodes = await self.store.get_nodes(plan_id)
        completed_ids = {node.id for node in nodes if node.status == "completed"}
        ready = ReadyTasks()
        for node in nodes:
            if node.status == "completed":
                ready.completed.append(node)
            elif node.status in ("failed", "cancelled"):
                ready.failed.append(node)
            elif node.status == "in_progress":
                ready.in_progress.append(node)
            elif all(dep in completed_ids for dep in node.dependencies):
                ready.ready.append(node)
            else:
                ready.waiting.append(node)
        return ready

    async def get_upstream_context(self, node_id: str) -> str:
        """Serialized results of completed dependencies, in dependency-list order."""
        node = await self.get_node(node_id)
        sections = []
        for dep_id in node.dependencies:
            dep = await self.store.get_node(dep_id)
            if dep is None or dep.status != "completed":
                continue
            payload = json.dumps(dep.result, indent=2, ensure_ascii=False, default=str)
            sections.append(f"## Result from: {dep.description}\n{payload}")
        return "\n\n".join(sections)

    async def is_plan_complete(self, plan_id: str) -> PlanCompletion:
        nodes = await self.store.get_nodes(plan_id)
        completed = sum(1 for node in nodes if node.status == "completed")
        failed = sum(1 for node in nodes if node.status in ("failed", "cancelled"))
        pending = sum(1 for node in nodes if node.status in ("pending", "in_progress"))
        return PlanCompletion(
            complete=pending == 0,
            success=pending == 0 and failed == 0,
            completed=completed,
            failed=failed,
            pending=pending,
        )

    async def finalize_plan(self, plan_id: str) -> PlanCompletion:
        completion = await self.is_plan_complete(plan_id)
        if completion.complete:
            status = "completed" if completion.success else "failed"
            await self.store.update_plan_status(plan_id, status)
            LOGGER.info(f"Plan {plan_id} {status}: {completion.completed} completed, {completion.failed} failed")
        return completion

    async def reopen_plan(self, plan_id: str) -> TaskPlan:
        """Put a finished plan back to executing so follow-up tasks can be added."""
        plan = await self.get_plan(plan_id)
        if plan.status != "executing":
            await self.store.update_plan_status(plan_id, "executing")
            plan.status = "executing"
            LOGGER.info(f"Reopened plan {plan_id} for modification")
        return plan

    # ========== node transitions ==========

    async def start_task(self, node_id: str, agent_id: str) -> TaskNode:
        node = await self.get_node(node_id)
        for dep_id in node.dependencies:
            dep = await self.store.get_node(dep_id)
            if dep is None or dep.status != "completed":
                raise TaskStateError(f"Task {node_id} has unmet dependency {dep_id}")
        return await self.store.transition_node(
            node_id, {"pending"},
            status="in_progress", assigned_agent_id=agent_id, started_at=utcnow(),
        )

    async def complete_task(self, node_id: str, result: Any) -> TaskNode:
        return await self.store.transition_node(
            node_id, {"in_progress"},
            status="completed", result=result, completed_at=utcnow(),
        )

    async def fail_task(self, node_id: str, error: str) -> TaskNode:
        node = await self.store.transition_node(
            node_id, {"pending", "in_progress"},
            status="failed", error=error, completed_at=utcnow(),
        )
        await self.cancel_blocked_tasks(node.plan_id)
        return node

    async def cancel_task(self, node_id: str, reason: str = "Cancelled") -> TaskNode:
        node = await self.store.transition_node(
            node_id, {"pending", "in_progress"},
            status="cancelled", error=reason, completed_at=utcnow(),
        )
        await self.cancel_blocked_tasks(node.plan_id)
        return node

    async def reset_for_retry(self, node_id: str) -> TaskNode:
        """Return an in-progress node to pending so it can be attempted again."""
        return await self.store.transition_node(
            node_id, {"in_progress"},
            status="pending", assigned_agent_id=None, started_at=None, error=None,
        )

    async def mark_failed(self, node_id: str, error: str) -> TaskNode:
        """Coordinator verdict: fail a node that has not completed, including a cancelled one."""
        node = await self.store.transition_node(
            node_id, {"pending", "in_progress", "cancelled", "failed"},
            status="failed", error=error, blocked_by=None, completed_at=utcnow(),
        )
        await self.cancel_blocked_tasks(node.plan_id)
        return node

    async def retry_task(self, node_id: str, strategy: Optional[str] = None) -> TaskNode:
        """Put a failed or cancelled node back to pending.

        Dependents that were cancelled only because of this node are restored
        as well, so the rest of the chain runs once the retry succeeds.
        """
        node = await self.get_node(node_id)
        description = node.description
        if strategy:
            description = f"{description}\n\nRetry strategy: {strategy}"
        node = await self.store.transition_node(
            node_id, {"failed", "cancelled"},
            status="pending", description=description, error=None, blocked_by=None,
            assigned_agent_id=None, started_at=None, completed_at=None,
        )
        await self.reopen_plan(node.plan_id)
        restored = await self._restore_blocked_tasks(node.plan_id)
        LOGGER.info(f"Task {node_id} queued for retry; {len(restored)} blocked dependents restored")
        return node

    async def _restore_blocked_tasks(self, plan_id: str) -> List[TaskNode]:
        restored: List[TaskNode] = []
        while True:
            nodes = await self.store.get_nodes(plan_id)
            by_id = {node.id: node for node in nodes}
            unblocked = [
                node for node in nodes
                if node.status == "cancelled" and node.blocked_by is not None
                and all(
                    by_id[dep].status not in ("failed", "cancelled")
                    for dep in node.dependencies if dep in by_id
                )
            ]
            if not unblocked:
                return restored
            for node in unblocked:
                restored.append(await self.store.transition_node(
                    node.id, {"cancelled"},
                    status="pending", error=None, blocked_by=None, completed_at=None,
                ))

    async def cancel_blocked_tasks(self, plan_id: str) -> List[TaskNode]:
        """Cancel pending nodes that can never run because a dependency did not complete.

        Repeats until no more nodes are affected so the cancellation propagates
        down dependency chains.
        """
        cancelled: List[TaskNode] = []
        while True:
            nodes = await self.store.get_nodes(plan_id)
            by_id = {node.id: node for node in nodes}
            blocked = [
                (node, dep_id)
                for node in nodes if node.status == "pending"
                for dep_id in node.dependencies
                if by_id.get(dep_id) is not None and by_id[dep_id].status in ("failed", "cancelled")
            ]
            if not blocked:
                return cancelled
            done = set()
            for node, dep_id in blocked:
                if node.id in done:
                    continue
                done.add(node.id)
                reason = f"Dependency '{by_id[dep_id].description}' did not complete"
                cancelled.append(await self.store.transition_node(
                    node.id, {"pending"},
                    status="cancelled", error=reason, blocked_by=dep_id, completed_at=utcnow(),
                ))
                LOGGER.info(f"Cancelled blocked task {node.id}: {reason}")

    # ========== modification ==========

    async def add_task(
        self,
        plan_id: str,
        description: str,
        agent_type: str = "general",
        dependencies: Iterable[str] = (),
    ) -> TaskNode:
        """Append a node to an executing plan.

        Dependencies must already exist in the plan, so no cycle can form.
        """
        plan = await self.get_plan(plan_id)
        if plan.status != "executing":
            raise TaskStateError(f"Plan {plan_id} is {plan.status} and cannot be modified")
        dependencies = list(dependencies)
        errors = []
        if not description.strip():
            errors.append("Task description must not be empty")
        if agent_type not in AGENT_TYPES:
            errors.append(f"Invalid agent type '{agent_type}'")
        for dep in dependencies:
            if dep not in plan.node_ids:
                errors.append(f"Unknown dependency '{dep}'")
        if errors:
            raise PlanValidationError(errors)

        node = TaskNode(
            id=new_id(),
            plan_id=plan_id,
            description=description,
            agent_type=agent_type,
            dependencies=dependencies,
        )
        await self.store.add_node(plan_id, node)
        LOGGER.info(f"Added task {node.id} to plan {plan_id}")
        return node

    async def remove_task(self, node_id: str) -> TaskNode:
        """Cancel a pending node nothing else depends on."""
        node = await self.get_node(node_id)
        if node.status != "pending":
            raise TaskStateError(f"Only pending tasks can be removed; {node_id} is {node.status}")
        for other in await self.store.get_nodes(node.plan_id):
            if node_id in other.dependencies and other.status != "cancelled":
                raise TaskStateError(f"Task {node_id} has dependents and cannot be removed")
        return await self.store.transition_node(
            node_id, {"pending"}, status="cancelled", error="Removed from plan", completed_at=utcnow(),
        )

    # ========== reporting ==========

    async def get_plan_summary(self, plan_id: str) -> str:
        nodes = await self.store.get_nodes(plan_id)
        lines = [f"Plan ({get_plan_structure(nodes)}): {len(nodes)} tasks"]
        for index, node in enumerate(nodes, start=1):
            deps = f" (depends on: {len(node.dependencies)} tasks)" if node.dependencies else ""
            lines.append(f"{index}. [{node.agent_type}] {node.description}{deps} - {node.status}")
        return "\n".join(lines)
