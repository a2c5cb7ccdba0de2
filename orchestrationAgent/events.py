"""Tagged event variants and the per-run outbound channel.

Each event kind is its own frozen dataclass with a ``type`` tag. Runners and
the coordinator push events into an ``EventSink``; the transport layer drains
an ``EventChannel`` and matches on the concrete class.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, ClassVar, Dict, List, Optional, Protocol

from orchestrationAgent.state.models import utcnow

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    type: ClassVar[str] = "event"

    run_id: str
    timestamp: datetime = field(default_factory=utcnow, kw_only=True)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["timestamp"] = self.timestamp.isoformat()
        payload["type"] = self.type
        return payload


# ========== sub-agent events ==========

@dataclass(frozen=True)
class AgentEvent(Event):
    agent_id: str = ""
    task_node_id: Optional[str] = None


@dataclass(frozen=True)
class TokenEvent(AgentEvent):
    type: ClassVar[str] = "token"
    token: str = ""


@dataclass(frozen=True)
class ReasoningEvent(AgentEvent):
    type: ClassVar[str] = "reasoning"
    step_type: str = "thinking"
    content: str = ""


@dataclass(frozen=True)
class ToolCallEvent(AgentEvent):
    type: ClassVar[str] = "tool_call"
    tool_call_id: str = ""
    tool_id: str = ""
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResultEvent(AgentEvent):
    type: ClassVar[str] = "tool_result"
    tool_call_id: str = ""
    tool_id: str = ""
    success: bool = True
    output: Any = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ArtifactEvent(AgentEvent):
    type: ClassVar[str] = "artifact"
    artifact_id: str = ""
    artifact_type: str = "code"
    name: str = ""


@dataclass(frozen=True)
class StatusEvent(AgentEvent):
    type: ClassVar[str] = "status"
    status: str = ""


@dataclass(frozen=True)
class CompleteEvent(AgentEvent):
    type: ClassVar[str] = "complete"
    output: str = ""
    total_tokens: int = 0
    total_cost: float = 0.0


@dataclass(frozen=True)
class ErrorEvent(AgentEvent):
    type: ClassVar[str] = "error"
    error: str = ""
    failure_kind: str = "error"


# ========== run-level events ==========

@dataclass(frozen=True)
class OrchestratorStatusEvent(Event):
    type: ClassVar[str] = "orchestrator.status"
    status: str = ""
    message: str = ""


@dataclass(frozen=True)
class PlanCreatedEvent(Event):
    type: ClassVar[str] = "plan.created"
    plan_id: str = ""
    structure: str = "sequential"
    tasks: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class TaskStartedEvent(Event):
    type: ClassVar[str] = "task.started"
    task_node_id: str = ""
    agent_id: str = ""
    description: str = ""


@dataclass(frozen=True)
class TaskCompletedEvent(Event):
    type: ClassVar[str] = "task.completed"
    task_node_id: str = ""
    agent_id: str = ""


@dataclass(frozen=True)
class TaskFailedEvent(Event):
    type: ClassVar[str] = "task.failed"
    task_node_id: str = ""
    agent_id: str = ""
    error: str = ""
    will_retry: bool = False


@dataclass(frozen=True)
class AgentSpawnedEvent(Event):
    type: ClassVar[str] = "agent.spawned"
    agent_id: str = ""
    agent_type: str = ""
    task_node_id: Optional[str] = None


@dataclass(frozen=True)
class InterventionEvent(Event):
    type: ClassVar[str] = "agent.intervention"
    reason: str = ""
    task_node_id: Optional[str] = None
    agent_id: Optional[str] = None
    intervention_count: int = 0
    action: Optional[str] = None  # guide | redirect | cancel; None for escalations
    guidance: Optional[str] = None


@dataclass(frozen=True)
class FinalResponseEvent(Event):
    type: ClassVar[str] = "agent.final"
    content: str = ""


@dataclass(frozen=True)
class RunErrorEvent(Event):
    type: ClassVar[str] = "agent.error"
    error: str = ""


class EventSink(Protocol):
    def emit(self, event: Event) -> None: ...


class NullEventSink:
    """Sink that drops every event."""

    def emit(self, event: Event) -> None:
        return None


class EventChannel:
    """Unbounded queue of events for one run.

    ``emit`` never blocks, so producers are never slowed down by a slow
    consumer. Consumers iterate with ``async for`` until ``close`` is called.
    """

    _CLOSED = object()

    def __init__(self, run_id: Optional[str] = None):
        self.run_id = run_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: Event) -> None:
        if self._closed:
            LOGGER.debug(f"Dropping {event.type} event on closed channel")
            return
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._CLOSED)

    def drain_nowait(self) -> List[Event]:
        """Return every queued event without waiting."""
        events = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is self._CLOSED:
                self._queue.put_nowait(item)
                break
            events.append(item)
        return events

    async def __aiter__(self) -> AsyncIterator[Event]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item
