"""Progress and loop detection."""

from .loop_detection import LoopMonitor, MonitorDecision, RunHealth

__all__ = ["LoopMonitor", "MonitorDecision", "RunHealth"]
