"""Progress and loop detection.

Counts re-attempts per task node and escalations per run in the run's shared
state. Counters only move through the store's atomic increments because
several workers may finish at the same moment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from orchestrationAgent.config.settings import LoopDetectionSettings
from orchestrationAgent.state.store import StateStore

LOGGER = logging.getLogger(__name__)

MonitorDecision = Literal["continue", "request_guidance", "abort"]

TASK_WARNING_RATIO = 0.66


@dataclass(frozen=True)
class LoopCheck:
    allowed: bool
    current_count: int
    max_count: int
    reason: Optional[str] = None


@dataclass(frozen=True)
class RetryRecord:
    new_count: int
    is_last_retry: bool
    max_retries: int
    threshold_crossed: bool = False


@dataclass(frozen=True)
class InterventionRecord:
    new_count: int
    is_near_limit: bool
    is_at_limit: bool
    max_interventions: int


@dataclass
class RunHealth:
    healthy: bool
    intervention_count: int
    max_interventions: int
    task_counters: Dict[str, int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


class LoopMonitor:
    def __init__(self, store: StateStore, settings: Optional[LoopDetectionSettings] = None):
        self.store = store
        self.settings = settings or LoopDetectionSettings()

    def get_config(self) -> LoopDetectionSettings:
        return self.settings.model_copy()

    def update_config(self, **changes: Any) -> LoopDetectionSettings:
        """Return and install a copy of the settings with ``changes`` applied."""
        self.settings = LoopDetectionSettings.model_validate({**self.settings.model_dump(), **changes})
        LOGGER.info(f"Loop detection config updated: {changes}")
        return self.get_config()

    async def _counters(self, run_id: str):
        state = await self.store.get_orchestrator_state(run_id)
        if state is None:
            return {}, 0
        return state.loop_counters, state.intervention_count

    # ========== per-task retries ==========

    async def can_retry_task(self, run_id: str, task_node_id: str) -> LoopCheck:
        counters, _ = await self._counters(run_id)
        current = counters.get(task_node_id, 0)
        maximum = self.settings.max_retries_per_task
        if current >= maximum:
            return LoopCheck(
                allowed=False,
                current_count=current,
                max_count=maximum,
                reason=f"Task {task_node_id} reached the retry limit ({current}/{maximum})",
            )
        return LoopCheck(allowed=True, current_count=current, max_count=maximum)

    async def record_task_retry(self, run_id: str, task_node_id: str) -> RetryRecord:
        """Count one more attempt; crossing the limit raises one intervention."""
        new_count = await self.store.increment_loop_counter(run_id, task_node_id)
        await self.store.increment_node_retry(task_node_id)
        maximum = self.settings.max_retries_per_task

        crossed = new_count == maximum
        if crossed:
            total = await self.store.increment_interventions(run_id)
            LOGGER.warning(
                f"Task {task_node_id} hit the retry limit ({maximum}); run {run_id} interventions: {total}"
            )
        else:
            LOGGER.info(f"Task {task_node_id} retry {new_count}/{maximum}")

        return RetryRecord(
            new_count=new_count,
            is_last_retry=new_count >= maximum,
            max_retries=maximum,
            threshold_crossed=crossed,
        )

    # ========== run-wide interventions ==========

    async def can_intervene(self, run_id: str) -> LoopCheck:
        _, count = await self._counters(run_id)
        maximum = self.settings.max_total_interventions
        if count >= maximum:
            return LoopCheck(
                allowed=False,
                current_count=count,
                max_count=maximum,
                reason=f"Run {run_id} reached the intervention limit ({count}/{maximum})",
            )
        return LoopCheck(allowed=True, current_count=count, max_count=maximum)

    async def record_intervention(self, run_id: str) -> InterventionRecord:
        new_count = await self.store.increment_interventions(run_id)
        maximum = self.settings.max_total_interventions
        record = InterventionRecord(
            new_count=new_count,
            is_near_limit=new_count >= maximum * self.settings.near_limit_ratio,
            is_at_limit=new_count >= maximum,
            max_interventions=maximum,
        )
        if record.is_near_limit:
            LOGGER.warning(f"Run {run_id} interventions {new_count}/{maximum}")
        return record

    # ========== decisions ==========

    async def evaluate(self, run_id: str, task_node_id: Optional[str] = None) -> MonitorDecision:
        """Decide whether the coordinator may go on, should ask for guidance, or must abort."""
        counters, interventions = await self._counters(run_id)
        if interventions >= self.settings.max_total_interventions:
            return "abort"
        if task_node_id is not None and counters.get(task_node_id, 0) >= self.settings.max_retries_per_task:
            return "request_guidance"
        if interventions >= self.settings.max_total_interventions * self.settings.near_limit_ratio:
            return "request_guidance"
        return "continue"

    async def get_run_health(self, run_id: str) -> RunHealth:
        counters, interventions = await self._counters(run_id)
        max_retries = self.settings.max_retries_per_task
        max_interventions = self.settings.max_total_interventions
        warnings = []

        for node_id, count in counters.items():
            if max_retries and count >= max_retries * TASK_WARNING_RATIO:
                warnings.append(f"Task {node_id} has been retried {count}/{max_retries} times")
        if interventions >= max_interventions * self.settings.near_limit_ratio:
            warnings.append(f"Run has used {interventions}/{max_interventions} interventions")

        return RunHealth(
            healthy=not warnings,
            intervention_count=interventions,
            max_interventions=max_interventions,
            task_counters=dict(counters),
            warnings=warnings,
        )
