"""Task plan dependency graph."""

from .graph import (
    PlanCompletion,
    PlanValidationResult,
    ReadyTasks,
    TaskInput,
    TaskPlanInput,
    TaskPlanManager,
    get_plan_structure,
    has_cycle,
    validate_plan_input,
)

__all__ = [
    "PlanCompletion",
    "PlanValidationResult",
    "ReadyTasks",
    "TaskInput",
    "TaskPlanInput",
    "TaskPlanManager",
    "get_plan_structure",
    "has_cycle",
    "validate_plan_input",
]
