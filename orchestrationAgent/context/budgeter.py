"""Context token budgeter.

Keeps a conversation under a fraction of the model's effective context limit
by replacing the oldest messages with a single model-written summary.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from orchestrationAgent.config.settings import ContextSettings
from orchestrationAgent.context.token_counter import TokenCounter, get_context_limit
from orchestrationAgent.providers.base import GenerateOptions, ModelProvider
from orchestrationAgent.state.models import ContextSummary
from orchestrationAgent.tools.base import ToolDefinition
from orchestrationAgent.utils.logging_utils import log_context_compression

logger = logging.getLogger(__name__)

SUMMARY_PREFIX = "Previous conversation summary:"
TOOL_ARGS_PREVIEW = 200
SUMMARY_RATIO = 0.3

SUMMARIZER_PROMPT = f"""You compress the earlier part of an AI agent's working conversation so it can continue its task.

Write a concise summary that preserves:
- every tool call that was made and what it returned (key values, ids, paths, numbers)
- decisions taken and the reasons given
- errors encountered and how they were handled
- the current state of the task and what remains to be done

Use bullet points. Do not invent information. Start with "{SUMMARY_PREFIX}"."""


@dataclass
class ContextManagementResult:
    messages: List[BaseMessage]
    was_summarized: bool
    original_tokens: int
    new_tokens: int
    summary: Optional[ContextSummary] = None


class ContextBudgeter:
    """Summarizes old messages once estimated usage crosses the trigger threshold.

    Args:
        provider: Model used to write summaries
        settings: Thresholds and reserve
        counter: Token estimator (a fresh TokenCounter by default)
    """

    def __init__(
        self,
        provider: ModelProvider,
        settings: Optional[ContextSettings] = None,
        counter: Optional[TokenCounter] = None,
    ):
        self.provider = provider
        self.settings = settings or ContextSettings()
        self.counter = counter or TokenCounter()

    # ========== budget arithmetic ==========

    def effective_limit(self, model_id: Optional[str]) -> int:
        limit = get_context_limit(model_id, self.settings.default_context_limit)
        return max(limit - self.settings.output_reserve, 0)

    def trigger_tokens(self, model_id: Optional[str]) -> int:
        return int(self.effective_limit(model_id) * self.settings.trigger_threshold)

    def target_tokens(self, model_id: Optional[str]) -> int:
        return int(self.effective_limit(model_id) * self.settings.target_threshold)

    def would_trigger(
        self,
        messages: Sequence[BaseMessage],
        model_id: Optional[str],
        system_prompt: Optional[str] = None,
        tools: Optional[Sequence[ToolDefinition]] = None,
    ) -> bool:
        if not self.settings.enabled:
            return False
        if len(messages) <= self.settings.min_messages_to_keep:
            return False
        current = self.counter.count_context(messages, system_prompt, tools)
        return current > self.trigger_tokens(model_id)

    def find_keep_from_index(self, messages: Sequence[BaseMessage], message_budget: int) -> int:
        """Index of the oldest message in the retained window.

        Scans newest to oldest. The newest ``min_messages_to_keep`` messages are
        always retained; older ones are added while they fit in the budget.
        """
        min_keep = self.settings.min_messages_to_keep
        keep_from = len(messages)
        accumulated = 0

        for index in range(len(messages) - 1, -1, -1):
            cost = self.counter.count_message(messages[index])
            retained = len(messages) - index
            if retained > min_keep and accumulated + cost > message_budget:
                break
            accumulated += cost
            keep_from = index

        # A retained tool result must keep the assistant message that requested it
        while 0 < keep_from < len(messages) and isinstance(messages[keep_from], ToolMessage):
            keep_from -= 1

        return keep_from

    # ========== summarization ==========

    async def manage_context(
        self,
        messages: Sequence[BaseMessage],
        model_id: Optional[str],
        system_prompt: Optional[str] = None,
        tools: Optional[Sequence[ToolDefinition]] = None,
    ) -> ContextManagementResult:
        messages = list(messages)
        original_tokens = self.counter.count_context(messages, system_prompt, tools)
        unchanged = ContextManagementResult(
            messages=messages,
            was_summarized=False,
            original_tokens=original_tokens,
            new_tokens=original_tokens,
        )

        if not self.would_trigger(messages, model_id, system_prompt, tools):
            return unchanged

        fixed_overhead = self.counter.count_system_prompt(system_prompt) + self.counter.count_tools(tools)
        message_budget = self.target_tokens(model_id) - fixed_overhead

        keep_from = self.find_keep_from_index(messages, message_budget)
        if keep_from <= 1:
            logger.debug(f"Summarization skipped: only {keep_from} candidate message(s)")
            return unchanged

        candidates = messages[:keep_from]
        retained = messages[keep_from:]

        try:
            summary_text = await self._summarize(candidates)
        except Exception as e:
            logger.warning(f"Context summarization failed, keeping full history: {e}")
            return unchanged

        summary_message = SystemMessage(content=summary_text)
        new_messages = [summary_message, *retained]
        new_tokens = self.counter.count_context(new_messages, system_prompt, tools)

        if new_tokens >= original_tokens:
            logger.warning(
                f"Summary did not reduce context ({original_tokens} -> {new_tokens} tokens), discarding it"
            )
            return unchanged

        summary = ContextSummary(
            content=summary_text,
            summarized_message_count=len(candidates),
            original_token_count=self.counter.count_messages(candidates),
            summary_token_count=self.counter.count_message(summary_message),
        )
        log_context_compression(logger, model_id or "default model", original_tokens, new_tokens, len(candidates))

        return ContextManagementResult(
            messages=new_messages,
            was_summarized=True,
            original_tokens=original_tokens,
            new_tokens=new_tokens,
            summary=summary,
        )

    async def _summarize(self, candidates: Sequence[BaseMessage]) -> str:
        candidate_tokens = self.counter.count_messages(candidates)
        max_tokens = min(self.settings.summary_max_tokens, math.ceil(candidate_tokens * SUMMARY_RATIO))

        response = await self.provider.generate(
            [HumanMessage(content=format_messages_for_summary(candidates))],
            GenerateOptions(
                system_prompt=SUMMARIZER_PROMPT,
                temperature=self.settings.summary_temperature,
                max_tokens=max(max_tokens, 1),
            ),
        )

        text = (response.content or "").strip()
        if not text:
            raise ValueError("summary model returned empty content")
        if not text.startswith(SUMMARY_PREFIX):
            text = f"{SUMMARY_PREFIX}\n{text}"
        return text


def format_messages_for_summary(messages: Sequence[BaseMessage]) -> str:
    """Render messages as ``[i] ROLE: content`` lines for the summarizer."""
    lines = []
    for index, message in enumerate(messages):
        role = message.type.upper()
        content = message.content if isinstance(message.content, str) else str(message.content)
        line = f"[{index}] {role}: {content}"

        if isinstance(message, AIMessage) and message.tool_calls:
            calls = []
            for call in message.tool_calls:
                args = str(call.get("args") or {})
                if len(args) > TOOL_ARGS_PREVIEW:
                    args = args[:TOOL_ARGS_PREVIEW] + "..."
                calls.append(f"{call.get('name')}({args})")
            line += f"\n  Tool calls: {', '.join(calls)}"

        if isinstance(message, ToolMessage):
            line += f"\n  [Response to tool: {message.tool_call_id}]"

        lines.append(line)
    return "\n\n".join(lines)
