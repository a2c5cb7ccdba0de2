"""Unit tests for the LangChain provider adapter."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.language_models import GenericFakeChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, HumanMessage

from orchestrationAgent.providers.base import (
    DoneChunk,
    GenerateOptions,
    LangChainModelProvider,
    TokenChunk,
    ToolCallChunk,
)
from orchestrationAgent.utils.error_handler import ModelInvocationError


def provider_for(*messages):
    return LangChainModelProvider(
        GenericFakeChatModel(messages=iter(messages)),
        model_id="gpt-4o-mini",
        input_price_per_million=0.15,
        output_price_per_million=0.60,
    )


class TestLangChainModelProvider:
    def test_cost(self):
        provider = provider_for()
        assert provider.calculate_cost(1_000_000, 1_000_000) == pytest.approx(0.75)
        assert provider.get_model() == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_generate_maps_tool_calls_and_usage(self):
        provider = provider_for(AIMessage(
            content="",
            tool_calls=[{"name": "calculate", "args": {"expression": "1+1"}, "id": "call_1"}],
            usage_metadata={"input_tokens": 12, "output_tokens": 3, "total_tokens": 15},
        ))

        response = await provider.generate([HumanMessage(content="1+1?")], GenerateOptions())

        assert response.finish_reason == "tool_calls"
        [call] = response.tool_calls
        assert (call.id, call.name) == ("call_1", "calculate")
        assert json.loads(call.arguments) == {"expression": "1+1"}
        assert response.usage.total_tokens == 15

    @pytest.mark.asyncio
    async def test_stream_yields_tokens_then_done(self):
        provider = provider_for(AIMessage(content="Hello world"))

        chunks = [chunk async for chunk in provider.stream([HumanMessage(content="hi")], GenerateOptions())]

        assert "".join(chunk.token for chunk in chunks if isinstance(chunk, TokenChunk)) == "Hello world"
        assert isinstance(chunks[-1], DoneChunk)
        assert chunks[-1].response.content == "Hello world"

    @pytest.mark.asyncio
    async def test_errors_are_wrapped(self):
        chat_model = MagicMock()
        chat_model.ainvoke = AsyncMock(side_effect=RuntimeError("Error code: 429 - rate_limit_exceeded"))
        provider = LangChainModelProvider(chat_model, model_id="gpt-4o-mini")

        with pytest.raises(ModelInvocationError) as exc_info:
            await provider.generate([HumanMessage(content="hi")], GenerateOptions())

        assert exc_info.value.user_message == "Model provider rate limit reached, please retry later"

    @pytest.mark.asyncio
    async def test_system_prompt_is_prepended(self):
        chat_model = MagicMock()
        chat_model.ainvoke = AsyncMock(return_value=AIMessage(content="ok"))
        provider = LangChainModelProvider(chat_model, model_id="gpt-4o-mini")

        await provider.generate([HumanMessage(content="hi")], GenerateOptions(system_prompt="Be terse"))

        sent = chat_model.ainvoke.call_args.args[0]
        assert sent[0].content == "Be terse"
        assert sent[1].content == "hi"

    @pytest.mark.asyncio
    async def test_stream_yields_each_tool_call_once_complete(self):
        consumed = []
        parts = [
            AIMessageChunk(content="", tool_call_chunks=[
                {"name": "calculate", "args": '{"expression": ', "id": "call_1", "index": 0},
            ]),
            AIMessageChunk(content="", tool_call_chunks=[{"name": None, "args": '"1+1"}', "id": None, "index": 0}]),
            AIMessageChunk(content="", tool_call_chunks=[
                {"name": "web_search", "args": '{"query": "x"}', "id": "call_2", "index": 1},
            ]),
            AIMessageChunk(content="", usage_metadata={"input_tokens": 5, "output_tokens": 7, "total_tokens": 12}),
        ]

        async def fake_astream(messages):
            for part in parts:
                consumed.append(part)
                yield part

        chat_model = MagicMock()
        chat_model.astream = fake_astream
        provider = LangChainModelProvider(chat_model, model_id="gpt-4o-mini")

        seen = []
        async for chunk in provider.stream([HumanMessage(content="hi")], GenerateOptions()):
            seen.append((chunk, len(consumed)))

        calls = [(chunk.tool_call, position) for chunk, position in seen if isinstance(chunk, ToolCallChunk)]
        assert [(call.id, call.name) for call, _ in calls] == [("call_1", "calculate"), ("call_2", "web_search")]
        # The first call is reported while the second one is still streaming
        assert calls[0][1] == 3
        assert json.loads(calls[0][0].arguments) == {"expression": "1+1"}
        done = seen[-1][0]
        assert isinstance(done, DoneChunk)
        assert done.response.finish_reason == "tool_calls"
        assert [call.name for call in done.response.tool_calls] == ["calculate", "web_search"]
