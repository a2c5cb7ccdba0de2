"""Heuristic token estimation and model context limits.

Estimates are character based (about 3.5 characters per token) with a
penalty for JSON-heavy text, which tokenizes less efficiently than prose.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, ToolMessage

from orchestrationAgent.tools.base import ToolDefinition

CHARS_PER_TOKEN = 3.5
JSON_PENALTY = 1.2
MESSAGE_OVERHEAD = 4
TOOL_CALL_OVERHEAD = 5
TOOL_DEFINITION_OVERHEAD = 10
SYSTEM_PROMPT_OVERHEAD = 10

DEFAULT_CONTEXT_LIMIT = 128000

# Context window sizes (tokens); matched exactly first, then by longest prefix
MODEL_CONTEXT_LIMITS: Dict[str, int] = {
    "gpt-4o": 128000,
    "gpt-4o-mini": 128000,
    "gpt-4-turbo": 128000,
    "gpt-4.1": 128000,
    "gpt-4.1-mini": 128000,
    "gpt-4.1-nano": 128000,
    "o1": 200000,
    "o3": 200000,
    "o3-mini": 200000,
    "claude-3-5-sonnet": 200000,
    "claude-3-7-sonnet": 200000,
    "claude-3-opus": 200000,
    "claude-3-haiku": 200000,
    "claude-3-5-haiku": 200000,
    "claude-sonnet-4": 200000,
    "claude-opus-4": 200000,
    "claude-haiku-4": 200000,
}


def get_context_limit(model_id: Optional[str], default: int = DEFAULT_CONTEXT_LIMIT) -> int:
    """Return the context window size for a model.

    A ``provider:`` prefix (e.g. ``openai:gpt-4o``) is ignored. Unknown models
    fall back to ``default``.
    """
    if not model_id:
        return default

    name = model_id.split(":", 1)[1] if ":" in model_id else model_id
    name = name.lower()

    if name in MODEL_CONTEXT_LIMITS:
        return MODEL_CONTEXT_LIMITS[name]

    best_match = None
    for prefix in MODEL_CONTEXT_LIMITS:
        if name.startswith(prefix) and (best_match is None or len(prefix) > len(best_match)):
            best_match = prefix
    if best_match:
        return MODEL_CONTEXT_LIMITS[best_match]

    return default


@dataclass(frozen=True)
class TokenBreakdown:
    system: int
    messages: int
    tools: int

    @property
    def total(self) -> int:
        return self.system + self.messages + self.tools


def _message_text(message: BaseMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content
    return json.dumps(content, ensure_ascii=False, default=str)


class TokenCounter:
    """Stateless token estimator for messages, prompts and tool schemas."""

    def estimate_text(self, text: Optional[str]) -> int:
        if not text:
            return 0
        tokens = len(text) / CHARS_PER_TOKEN
        if any(ch in text for ch in "{}[]"):
            tokens *= JSON_PENALTY
        return math.ceil(tokens)

    def count_message(self, message: BaseMessage) -> int:
        tokens = MESSAGE_OVERHEAD + self.estimate_text(_message_text(message))

        if isinstance(message, ToolMessage):
            tokens += self.estimate_text(message.tool_call_id)

        if isinstance(message, AIMessage):
            for call in message.tool_calls or []:
                tokens += self.estimate_text(call.get("id") or "")
                tokens += self.estimate_text(call.get("name") or "")
                tokens += self.estimate_text(json.dumps(call.get("args") or {}, ensure_ascii=False))
                tokens += TOOL_CALL_OVERHEAD

        return tokens

    def count_messages(self, messages: Iterable[BaseMessage]) -> int:
        return sum(self.count_message(message) for message in messages)

    def count_tool(self, tool: ToolDefinition) -> int:
        return (
            TOOL_DEFINITION_OVERHEAD
            + self.estimate_text(tool.id)
            + self.estimate_text(tool.name)
            + self.estimate_text(tool.description)
            + self.estimate_text(json.dumps(tool.parameters or {}, ensure_ascii=False))
        )

    def count_tools(self, tools: Optional[Sequence[ToolDefinition]]) -> int:
        return sum(self.count_tool(tool) for tool in tools or [])

    def count_system_prompt(self, system_prompt: Optional[str]) -> int:
        if not system_prompt:
            return 0
        return SYSTEM_PROMPT_OVERHEAD + self.estimate_text(system_prompt)

    def breakdown(
        self,
        messages: Sequence[BaseMessage],
        system_prompt: Optional[str] = None,
        tools: Optional[Sequence[ToolDefinition]] = None,
    ) -> TokenBreakdown:
        return TokenBreakdown(
            system=self.count_system_prompt(system_prompt),
            messages=self.count_messages(messages),
            tools=self.count_tools(tools),
        )

    def count_context(
        self,
        messages: Sequence[BaseMessage],
        system_prompt: Optional[str] = None,
        tools: Optional[Sequence[ToolDefinition]] = None,
    ) -> int:
        return self.breakdown(messages, system_prompt, tools).total
