"""Model provider contract and the LangChain chat model adapter."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Literal, Optional, Sequence, Union

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, SystemMessage

from orchestrationAgent.tools.base import ToolDefinition
from orchestrationAgent.utils.error_handler import ModelInvocationError, describe_model_error

LOGGER = logging.getLogger(__name__)

FinishReason = Literal["stop", "tool_calls", "length", "error"]


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class ToolCallRequest:
    """A tool call requested by the model; ``arguments`` is the raw JSON text."""

    id: str
    name: str
    arguments: str = "{}"

    def parse_arguments(self) -> Dict[str, Any]:
        parsed = json.loads(self.arguments or "{}")
        if not isinstance(parsed, dict):
            raise ValueError("Tool arguments must be a JSON object")
        return parsed


@dataclass
class ModelResponse:
    content: str = ""
    tool_calls: List[ToolCallRequest] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    finish_reason: FinishReason = "stop"
    reasoning: str = ""


@dataclass
class GenerateOptions:
    system_prompt: Optional[str] = None
    tools: Sequence[ToolDefinition] = ()
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass(frozen=True)
class TokenChunk:
    token: str


@dataclass(frozen=True)
class ReasoningChunk:
    text: str


@dataclass(frozen=True)
class ToolCallChunk:
    tool_call: ToolCallRequest


@dataclass(frozen=True)
class DoneChunk:
    response: ModelResponse


StreamChunk = Union[TokenChunk, ReasoningChunk, ToolCallChunk, DoneChunk]


class ModelProvider(ABC):
    """What the runner, coordinator and budgeter need from a language model."""

    @abstractmethod
    async def generate(self, messages: List[BaseMessage], options: GenerateOptions) -> ModelResponse: ...

    @abstractmethod
    def stream(self, messages: List[BaseMessage], options: GenerateOptions) -> AsyncIterator[StreamChunk]:
        """Yield chunks as they arrive; the last chunk is always a DoneChunk."""

    @abstractmethod
    def calculate_cost(self, prompt_tokens: int, completion_tokens: int) -> float: ...

    @abstractmethod
    def get_model(self) -> str: ...


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return ""


class LangChainModelProvider(ModelProvider):
    """Adapts a LangChain ``BaseChatModel`` to the provider contract.

    Args:
        chat_model: Any LangChain chat model supporting ``bind_tools``
        model_id: Identifier reported by ``get_model`` (used for context limits)
        input_price_per_million: Prompt token price per million tokens
        output_price_per_million: Completion token price per million tokens
    """

    def __init__(
        self,
        chat_model: BaseChatModel,
        model_id: str,
        input_price_per_million: float = 0.0,
        output_price_per_million: float = 0.0,
    ):
        self._model = chat_model
        self._model_id = model_id
        self._input_price = input_price_per_million
        self._output_price = output_price_per_million

    def get_model(self) -> str:
        return self._model_id

    def calculate_cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        return (prompt_tokens * self._input_price + completion_tokens * self._output_price) / 1_000_000

    def _runnable(self, options: GenerateOptions):
        runnable: Any = self._model
        if options.tools:
            runnable = runnable.bind_tools([tool.to_openai_tool() for tool in options.tools])
        kwargs = {}
        if options.temperature is not None:
            kwargs["temperature"] = options.temperature
        if options.max_tokens is not None:
            kwargs["max_tokens"] = options.max_tokens
        return runnable.bind(**kwargs) if kwargs else runnable

    @staticmethod
    def _prepare(messages: List[BaseMessage], options: GenerateOptions) -> List[BaseMessage]:
        if options.system_prompt:
            return [SystemMessage(content=options.system_prompt), *messages]
        return list(messages)

    @staticmethod
    def _to_response(message: AIMessage) -> ModelResponse:
        tool_calls = [
            ToolCallRequest(id=call.get("id") or "", name=call["name"], arguments=json.dumps(call.get("args") or {}))
            for call in getattr(message, "tool_calls", []) or []
        ]
        # Unparseable arguments are kept raw so the runner reports them back to the model
        for call in getattr(message, "invalid_tool_calls", []) or []:
            tool_calls.append(ToolCallRequest(
                id=call.get("id") or "",
                name=call.get("name") or "",
                arguments=call.get("args") or "",
            ))

        usage = Usage()
        metadata = getattr(message, "usage_metadata", None)
        if metadata:
            usage = Usage(
                prompt_tokens=metadata.get("input_tokens", 0),
                completion_tokens=metadata.get("output_tokens", 0),
            )

        raw_reason = (message.response_metadata or {}).get("finish_reason")
        if tool_calls:
            finish_reason = "tool_calls"
        elif raw_reason == "length":
            finish_reason = "length"
        else:
            finish_reason = "stop"

        return ModelResponse(
            content=_content_text(message.content),
            tool_calls=tool_calls,
            usage=usage,
            finish_reason=finish_reason,
            reasoning=message.additional_kwargs.get("reasoning_content", "") or "",
        )

    async def generate(self, messages: List[BaseMessage], options: GenerateOptions) -> ModelResponse:
        try:
            message = await self._runnable(options).ainvoke(self._prepare(messages, options))
        except Exception as e:
            raise ModelInvocationError(str(e), user_message=describe_model_error(e)) from e
        return self._to_response(message)

    @staticmethod
    def _streamed_call(merged: AIMessage, index: Any) -> ToolCallRequest:
        """Rebuild one tool call from the merged ``tool_call_chunks`` at ``index``."""
        for entry in getattr(merged, "tool_call_chunks", None) or []:
            if entry.get("index") == index:
                return ToolCallRequest(
                    id=entry.get("id") or "",
                    name=entry.get("name") or "",
                    arguments=entry.get("args") or "{}",
                )
        return ToolCallRequest(id="", name="", arguments="{}")

    async def stream(self, messages: List[BaseMessage], options: GenerateOptions) -> AsyncIterator[StreamChunk]:
        merged = None
        open_index: Any = None
        streamed_calls = 0
        try:
            async for chunk in self._runnable(options).astream(self._prepare(messages, options)):
                merged = chunk if merged is None else merged + chunk
                reasoning = chunk.additional_kwargs.get("reasoning_content")
                if reasoning:
                    yield ReasoningChunk(text=reasoning)
                text = _content_text(chunk.content)
                if text:
                    yield TokenChunk(token=text)
                for call_chunk in getattr(chunk, "tool_call_chunks", None) or []:
                    index = call_chunk.get("index")
                    # A new index means the previous call has finished streaming
                    if streamed_calls and index != open_index:
                        yield ToolCallChunk(tool_call=self._streamed_call(merged, open_index))
                    if not streamed_calls or index != open_index:
                        streamed_calls += 1
                    open_index = index
        except Exception as e:
            raise ModelInvocationError(str(e), user_message=describe_model_error(e)) from e

        if merged is None:
            yield DoneChunk(response=ModelResponse())
            return

        response = self._to_response(merged)
        if streamed_calls:
            yield ToolCallChunk(tool_call=self._streamed_call(merged, open_index))
        else:
            for call in response.tool_calls:
                yield ToolCallChunk(tool_call=call)
        yield DoneChunk(response=response)
