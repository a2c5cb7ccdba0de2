"""Sub-agent runner: one worker's call-model / call-tools graph.

State machine: initializing -> running -> completed | failed | cancelled.
The loop itself is a LangGraph graph (agent -> tools -> agent, with a
summarization detour); this class supplies its nodes.
Every mutation (messages, tool calls, reasoning, artifacts, metrics) is
written through the state store as it happens, so an in-flight worker can be
observed from outside.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, RemoveMessage, SystemMessage, ToolMessage
from langchain_core.messages.tool import tool_call as make_tool_call
from langgraph.graph.message import REMOVE_ALL_MESSAGES

from orchestrationAgent.agents.scopes import AGENT_CAPABILITIES, filter_tools_for_agent
from orchestrationAgent.config.settings import AgentSettings
from orchestrationAgent.context.budgeter import ContextBudgeter
from orchestrationAgent.events import (
    ArtifactEvent,
    CompleteEvent,
    ErrorEvent,
    EventSink,
    NullEventSink,
    ReasoningEvent,
    StatusEvent,
    TokenEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from orchestrationAgent.graph import AgentLoopState, build_agent_graph
from orchestrationAgent.providers.base import (
    DoneChunk,
    GenerateOptions,
    ModelProvider,
    ModelResponse,
    ReasoningChunk,
    TokenChunk,
    ToolCallChunk,
    ToolCallRequest,
)
from orchestrationAgent.state.models import (
    TERMINAL_AGENT_STATUSES,
    AgentStatus,
    Artifact,
    ReasoningStep,
    SubAgentState,
    ToolCallRecord,
    utcnow,
)
from orchestrationAgent.state.store import StateStore
from orchestrationAgent.tools.base import ToolDefinition, ToolInvoker, ToolResult
from orchestrationAgent.utils.error_handler import ModelInvocationError, OrchestrationError
from orchestrationAgent.utils.logging_utils import log_error, log_prompt

LOGGER = logging.getLogger(__name__)

GUIDANCE_PREFIX = "[ORCHESTRATOR GUIDANCE]"

_FENCED_BLOCK = re.compile(r"```([\w+#.-]*)[ \t]*\n(.*?)```", re.DOTALL)

_ALLOWED_TRANSITIONS = {
    "initializing": {"running", "failed", "cancelled"},
    "running": {"completed", "failed", "cancelled"},
}


@dataclass
class SubAgentConfig:
    agent_id: str
    run_id: str
    agent_type: str
    task_description: str
    task_node_id: Optional[str] = None
    principal: str = "default"
    upstream_context: str = ""
    additional_tools: Sequence[str] = ()
    instructions: Optional[str] = None
    max_iterations: Optional[int] = None


@dataclass
class SubAgentResult:
    status: AgentStatus
    success: bool
    output: str = ""
    error: Optional[str] = None
    failure_kind: Optional[str] = None  # "error" | "max_iterations" | "cancelled"
    artifacts: List[Artifact] = field(default_factory=list)
    total_tokens: int = 0
    total_cost: float = 0.0
    iterations: int = 0
    agent_id: Optional[str] = None
    task_node_id: Optional[str] = None


def extract_artifacts(content: str) -> List[Artifact]:
    """Fenced code blocks become code artifacts; parseable JSON blocks become data."""
    artifacts = []
    for index, match in enumerate(_FENCED_BLOCK.finditer(content or ""), start=1):
        language = match.group(1).lower() or None
        body = match.group(2).strip()
        if not body:
            continue
        if language == "json":
            try:
                data = json.loads(body)
            except ValueError:
                pass
            else:
                artifacts.append(Artifact(type="data", name=f"data_{index}", content=body, language="json", data=data))
                continue
        artifacts.append(Artifact(type="code", name=f"{language or 'code'}_{index}", content=body, language=language))
    return artifacts


def build_system_prompt(config: SubAgentConfig) -> str:
    sections = [
        AGENT_CAPABILITIES.get(config.agent_type, AGENT_CAPABILITIES["general"]),
        f"## Your Task\n{config.task_description}",
        "## Guidelines\n"
        "- Work only on the task above; other tasks are handled by other agents.\n"
        "- Use the available tools when they help; tool errors are returned to you as results.\n"
        f"- Messages starting with {GUIDANCE_PREFIX} come from the coordinator and take priority.\n"
        "- When you are done, reply with the final result and do not call any tool.",
    ]
    if config.instructions:
        sections.append(f"## Additional Instructions\n{config.instructions}")
    return "\n\n".join(sections)


def build_initial_message(config: SubAgentConfig) -> HumanMessage:
    content = config.task_description
    if config.upstream_context:
        content += f"\n\n## Context from previous tasks\n{config.upstream_context}"
    return HumanMessage(content=content)


class SubAgentRunner:
    """Drives one sub-agent to a terminal state.

    Cancellation is cooperative: ``cancel()`` sets a token that is checked at
    the start of each model turn and before each tool call. An in-flight model
    stream or tool call is not interrupted.
    """

    def __init__(
        self,
        config: SubAgentConfig,
        provider: ModelProvider,
        tools: ToolInvoker,
        store: StateStore,
        budgeter: ContextBudgeter,
        events: Optional[EventSink] = None,
        settings: Optional[AgentSettings] = None,
    ):
        self.config = config
        self.provider = provider
        self.tools = tools
        self.store = store
        self.budgeter = budgeter
        self.events = events or NullEventSink()
        self.settings = settings or AgentSettings()

        self.max_iterations = config.max_iterations or self.settings.max_iterations
        self._status: AgentStatus = "initializing"
        self._cancel_token = asyncio.Event()
        self._cancel_reason: Optional[str] = None
        self._started = False
        self._system_prompt = build_system_prompt(config)
        self._visible_tools: List[ToolDefinition] = []
        self._total_tokens = 0
        self._total_cost = 0.0
        self._iterations = 0

    @property
    def agent_id(self) -> str:
        return self.config.agent_id

    @property
    def status(self) -> AgentStatus:
        return self._status

    @property
    def is_cancelled(self) -> bool:
        return self._cancel_token.is_set()

    def initial_state(self) -> SubAgentState:
        return SubAgentState(
            agent_id=self.config.agent_id,
            run_id=self.config.run_id,
            task_node_id=self.config.task_node_id,
            agent_type=self.config.agent_type,
            task_description=self.config.task_description,
        )

    def cancel(self, reason: str = "Cancelled by coordinator") -> None:
        if not self._cancel_token.is_set():
            self._cancel_reason = reason
            self._cancel_token.set()
            LOGGER.info(f"Cancellation requested for agent {self.agent_id}: {reason}")

    async def inject_guidance(self, guidance: str) -> None:
        """Queue guidance for the next iteration (replaces unconsumed guidance)."""
        await self.store.set_pending_guidance(self.agent_id, guidance)

    # ========== events and persistence ==========

    def _emit(self, event_cls, **payload: Any) -> None:
        self.events.emit(event_cls(
            run_id=self.config.run_id,
            agent_id=self.agent_id,
            task_node_id=self.config.task_node_id,
            **payload,
        ))

    async def _transition(self, status: AgentStatus) -> None:
        if status not in _ALLOWED_TRANSITIONS.get(self._status, set()):
            LOGGER.warning(f"Agent {self.agent_id}: ignoring transition {self._status} -> {status}")
            return
        self._status = status
        fields: Dict[str, Any] = {"status": status}
        if status in TERMINAL_AGENT_STATUSES:
            fields["completed_at"] = utcnow()
        await self.store.update_agent_state(self.agent_id, **fields)
        self._emit(StatusEvent, status=status)
        LOGGER.info(f"Agent {self.agent_id} ({self.config.agent_type}) -> {status}")

    async def _persist_message(self, message: BaseMessage) -> None:
        await self.store.append_message(self.agent_id, message)

    async def _add_reasoning(self, step_type: str, content: str) -> None:
        await self.store.append_reasoning_step(self.agent_id, ReasoningStep(type=step_type, content=content))
        self._emit(ReasoningEvent, step_type=step_type, content=content)

    async def _record_usage(self, response: ModelResponse) -> None:
        tokens = response.usage.total_tokens
        cost = self.provider.calculate_cost(response.usage.prompt_tokens, response.usage.completion_tokens)
        self._total_tokens += tokens
        self._total_cost += cost
        await self.store.increment_agent_metrics(self.agent_id, tokens, cost)
        await self.store.increment_run_totals(self.config.run_id, tokens, cost)

    # ========== graph ==========

    async def run(self) -> SubAgentResult:
        if self._started:
            raise RuntimeError(f"Agent {self.agent_id} has already been run")
        self._started = True

        try:
            if self.is_cancelled:
                return await self._finish_cancelled()

            await self._transition("running")
            log_prompt(LOGGER, f"agent {self.agent_id} ({self.config.agent_type})", self._system_prompt)

            initial = build_initial_message(self.config)
            await self._persist_message(initial)
            self._visible_tools = filter_tools_for_agent(
                await self.tools.get_tools(self.config.principal, self.config.agent_type),
                self.config.agent_type,
                self.config.additional_tools,
            )

            graph = build_agent_graph(
                agent=self._agent_node,
                tools=self._tools_node,
                summarization=self._summarization_node,
            )
            final_state = await graph.ainvoke(
                {"messages": [initial], "iterations": 0, "max_iterations": self.max_iterations},
                config={"recursion_limit": self.max_iterations * 3 + 5},
            )

            if self.is_cancelled:
                return await self._finish_cancelled()
            output = final_state.get("output")
            if output is None:
                return await self._finish_failed(
                    f"Reached maximum iterations ({self.max_iterations})", failure_kind="max_iterations"
                )
            return await self._finish_completed(output)

        except asyncio.CancelledError:
            self._cancel_reason = self._cancel_reason or "Task was cancelled"
            await asyncio.shield(self._finish_cancelled())
            raise
        except Exception as e:
            log_error(LOGGER, e, f"agent {self.agent_id}")
            message = e.user_message if isinstance(e, OrchestrationError) else str(e) or type(e).__name__
            return await self._finish_failed(message, failure_kind="error")

    async def _agent_node(self, state: AgentLoopState) -> Dict[str, Any]:
        """One model turn, preceded by any queued guidance."""
        if self.is_cancelled:
            return {"cancelled": True, "pending_calls": []}

        iterations = state.get("iterations", 0) + 1
        self._iterations = iterations
        await self.store.increment_agent_metrics(self.agent_id, 0, 0.0, iterations=1)

        new_messages: List[BaseMessage] = []
        guidance = await self.store.take_pending_guidance(self.agent_id)
        if guidance:
            note = SystemMessage(content=f"{GUIDANCE_PREFIX}: {guidance}")
            await self._persist_message(note)
            new_messages.append(note)
            await self._add_reasoning("observation", f"Received guidance: {guidance}")

        response = await self._stream_model([*state["messages"], *new_messages])
        await self._record_usage(response)

        reply = AIMessage(
            content=response.content,
            tool_calls=[self._as_message_tool_call(call) for call in response.tool_calls],
        )
        await self._persist_message(reply)
        new_messages.append(reply)

        update: Dict[str, Any] = {
            "messages": new_messages,
            "iterations": iterations,
            "pending_calls": list(response.tool_calls),
            "cancelled": self.is_cancelled,
        }
        if response.tool_calls:
            if response.content:
                await self._add_reasoning("decision", response.content)
        else:
            update["output"] = response.content
        return update

    async def _tools_node(self, state: AgentLoopState) -> Dict[str, Any]:
        results: List[BaseMessage] = []
        for call in state.get("pending_calls") or []:
            if self.is_cancelled:
                break
            results.append(await self._execute_tool_call(call))

        messages = [*state["messages"], *results]
        return {
            "messages": results,
            "pending_calls": [],
            "cancelled": self.is_cancelled,
            "needs_compression": self.budgeter.would_trigger(
                messages, self.provider.get_model(), system_prompt=self._system_prompt, tools=self._visible_tools,
            ),
        }

    async def _summarization_node(self, state: AgentLoopState) -> Dict[str, Any]:
        result = await self.budgeter.manage_context(
            state["messages"],
            self.provider.get_model(),
            system_prompt=self._system_prompt,
            tools=self._visible_tools,
        )
        if not result.was_summarized:
            return {"needs_compression": False}

        messages = list(result.messages)
        await self.store.replace_messages(self.agent_id, messages)
        await self._add_reasoning(
            "observation",
            f"Summarized {result.summary.summarized_message_count} earlier messages "
            f"({result.original_tokens} -> {result.new_tokens} tokens)",
        )
        return {"messages": [RemoveMessage(id=REMOVE_ALL_MESSAGES), *messages], "needs_compression": False}

    async def _stream_model(self, messages: Sequence[BaseMessage]) -> ModelResponse:
        options = GenerateOptions(
            system_prompt=self._system_prompt,
            tools=self._visible_tools,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
        )
        response: Optional[ModelResponse] = None
        reasoning_parts: List[str] = []

        async for chunk in self.provider.stream(list(messages), options):
            if isinstance(chunk, TokenChunk):
                self._emit(TokenEvent, token=chunk.token)
            elif isinstance(chunk, ReasoningChunk):
                reasoning_parts.append(chunk.text)
                self._emit(ReasoningEvent, step_type="thinking", content=chunk.text)
            elif isinstance(chunk, ToolCallChunk):
                self._emit(
                    ToolCallEvent,
                    tool_call_id=chunk.tool_call.id,
                    tool_id=chunk.tool_call.name,
                    arguments=self._safe_arguments(chunk.tool_call),
                )
            elif isinstance(chunk, DoneChunk):
                response = chunk.response

        if response is None:
            raise ModelInvocationError("Model stream ended without a final response")
        if reasoning_parts:
            await self.store.append_reasoning_step(
                self.agent_id, ReasoningStep(type="thinking", content="".join(reasoning_parts))
            )
        return response

    @staticmethod
    def _safe_arguments(call: ToolCallRequest) -> Dict[str, Any]:
        try:
            return call.parse_arguments()
        except ValueError:
            return {}

    def _as_message_tool_call(self, call: ToolCallRequest):
        return make_tool_call(name=call.name, args=self._safe_arguments(call), id=call.id)

    async def _execute_tool_call(self, call: ToolCallRequest) -> ToolMessage:
        record = ToolCallRecord(id=call.id, tool_id=call.name, input=self._safe_arguments(call))
        await self.store.append_tool_call(self.agent_id, record)

        started = time.monotonic()
        try:
            arguments = call.parse_arguments()
        except ValueError as e:
            result = ToolResult.fail(f"Invalid JSON arguments for {call.name}: {e}")
        else:
            visible = {tool.id for tool in self._visible_tools}
            if call.name not in visible:
                result = ToolResult.fail(f"Tool '{call.name}' is not available to the {self.config.agent_type} agent")
            else:
                result = await self.tools.invoke(self.config.principal, call.name, arguments)

        record.status = "success" if result.success else "error"
        record.output = result.output
        record.error = result.error
        record.duration_ms = (time.monotonic() - started) * 1000
        await self.store.update_tool_call(self.agent_id, record)

        self._emit(
            ToolResultEvent,
            tool_call_id=call.id,
            tool_id=call.name,
            success=result.success,
            output=result.output,
            error=result.error,
        )
        message = ToolMessage(
            content=json.dumps(result.to_payload(), ensure_ascii=False, default=str),
            tool_call_id=call.id,
            name=call.name,
            status="success" if result.success else "error",
        )
        await self._persist_message(message)
        return message

    # ========== terminal states ==========

    def _result(self, status: AgentStatus, **fields: Any) -> SubAgentResult:
        return SubAgentResult(
            status=status,
            total_tokens=self._total_tokens,
            total_cost=self._total_cost,
            iterations=self._iterations,
            agent_id=self.agent_id,
            task_node_id=self.config.task_node_id,
            **fields,
        )

    async def _finish_completed(self, output: str) -> SubAgentResult:
        artifacts = extract_artifacts(output)
        for artifact in artifacts:
            await self.store.append_artifact(self.agent_id, artifact)
            self._emit(ArtifactEvent, artifact_id=artifact.id, artifact_type=artifact.type, name=artifact.name)

        await self.store.update_agent_state(self.agent_id, result=output)
        await self._transition("completed")
        self._emit(CompleteEvent, output=output, total_tokens=self._total_tokens, total_cost=self._total_cost)
        return self._result("completed", success=True, output=output, artifacts=artifacts)

    async def _finish_failed(self, error: str, failure_kind: str) -> SubAgentResult:
        await self.store.update_agent_state(self.agent_id, error=error)
        await self._transition("failed")
        self._emit(ErrorEvent, error=error, failure_kind=failure_kind)
        return self._result("failed", success=False, error=error, failure_kind=failure_kind)

    async def _finish_cancelled(self) -> SubAgentResult:
        error = f"Agent was cancelled: {self._cancel_reason or 'no reason given'}"
        await self.store.update_agent_state(self.agent_id, error=error)
        await self._transition("cancelled")
        return self._result("cancelled", success=False, error=error, failure_kind="cancelled")
