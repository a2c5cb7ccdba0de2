"""Configuration package."""

from .settings import (
    AgentSettings,
    ContextSettings,
    LoopDetectionSettings,
    MCPSettings,
    ModelSettings,
    ObservabilitySettings,
    OrchestratorSettings,
    Settings,
    get_settings,
)

__all__ = [
    "AgentSettings",
    "ContextSettings",
    "LoopDetectionSettings",
    "MCPSettings",
    "ModelSettings",
    "ObservabilitySettings",
    "OrchestratorSettings",
    "Settings",
    "get_settings",
]
