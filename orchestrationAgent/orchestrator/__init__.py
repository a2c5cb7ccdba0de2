"""Orchestrator coordinator."""

from .coordinator import Orchestrator, OrchestratorRunResult
from .tools import ORCHESTRATOR_TOOLS

__all__ = ["ORCHESTRATOR_TOOLS", "Orchestrator", "OrchestratorRunResult"]
