"""Test doubles: a scripted model provider, an event recorder and a fake MCP connection."""

import asyncio
import inspect
import itertools
import json
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from mcp.types import CallToolResult, TextContent, Tool

from orchestrationAgent.events import Event
from orchestrationAgent.providers.base import (
    DoneChunk,
    GenerateOptions,
    ModelProvider,
    ModelResponse,
    TokenChunk,
    ToolCallChunk,
    ToolCallRequest,
    Usage,
)
from orchestrationAgent.tools.mcp.connection import ServerInfo

_call_ids = itertools.count(1)


def text_response(content: str, prompt_tokens: int = 10, completion_tokens: int = 5) -> ModelResponse:
    return ModelResponse(content=content, usage=Usage(prompt_tokens, completion_tokens), finish_reason="stop")


def tool_response(*calls, content: str = "", prompt_tokens: int = 10, completion_tokens: int = 5) -> ModelResponse:
    """Build a response requesting ``calls``: (name, args) pairs, args a dict or raw JSON text."""
    requests = []
    for name, args in calls:
        raw = args if isinstance(args, str) else json.dumps(args)
        requests.append(ToolCallRequest(id=f"call_{next(_call_ids)}", name=name, arguments=raw))
    return ModelResponse(
        content=content,
        tool_calls=requests,
        usage=Usage(prompt_tokens, completion_tokens),
        finish_reason="tool_calls",
    )


Script = Union[ModelResponse, Exception, Callable[[List[Any], GenerateOptions], ModelResponse]]


class FakeProvider(ModelProvider):
    """Replays scripted responses; ``responder`` answers once the script is empty.

    Callables may be coroutine functions, so a test can hold a call open.

    Costs 1 USD per million prompt tokens and 2 USD per million completion tokens.
    """

    def __init__(
        self,
        script: Sequence[Script] = (),
        responder: Optional[Callable[[List[Any], GenerateOptions], ModelResponse]] = None,
        model_id: str = "gpt-4o-mini",
        delay: float = 0.0,
    ):
        self.script = list(script)
        self.responder = responder
        self.model_id = model_id
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []

    async def _next(self, messages, options) -> ModelResponse:
        self.calls.append({"messages": list(messages), "options": options})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.script:
            item = self.script.pop(0)
        elif self.responder is not None:
            item = self.responder
        else:
            item = text_response("done")
        if isinstance(item, Exception):
            raise item
        if callable(item):
            result = item(list(messages), options)
            if inspect.isawaitable(result):
                result = await result
            return result
        return item

    async def generate(self, messages, options):
        return await self._next(messages, options)

    async def stream(self, messages, options):
        response = await self._next(messages, options)
        if response.content:
            yield TokenChunk(token=response.content)
        for call in response.tool_calls:
            yield ToolCallChunk(tool_call=call)
        yield DoneChunk(response=response)

    def calculate_cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        return (prompt_tokens * 1.0 + completion_tokens * 2.0) / 1_000_000

    def get_model(self) -> str:
        return self.model_id


class RecordingSink:
    """Event sink that keeps every event for assertions."""

    def __init__(self):
        self.events: List[Event] = []

    def emit(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[Event]:
        return [event for event in self.events if event.type == event_type]


class FakeConnection:
    """In-process stand-in for an MCPConnection."""

    def __init__(
        self,
        tools: Sequence[Tool] = (),
        handlers: Optional[Dict[str, Callable[[Dict[str, Any]], Any]]] = None,
        open_error: Optional[BaseException] = None,
        list_error: Optional[BaseException] = None,
        server_name: str = "fake",
    ):
        self.tools = list(tools)
        self.handlers = handlers or {}
        self.open_error = open_error
        self.list_error = list_error
        self.server_name = server_name
        self.opened = False
        self.closed = False
        self.calls: List[tuple] = []
        self.list_calls = 0

    async def open(self) -> ServerInfo:
        if self.open_error is not None:
            raise self.open_error
        self.opened = True
        return ServerInfo(name=self.server_name, version="1.0", protocol_version="2025-03-26")

    async def list_tools(self) -> List[Tool]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return list(self.tools)

    async def call_tool(self, tool_name: str, arguments: Dict[str, Any]) -> CallToolResult:
        self.calls.append((tool_name, arguments))
        handler = self.handlers.get(tool_name)
        if handler is None:
            return CallToolResult(content=[TextContent(type="text", text=f"unknown tool {tool_name}")], isError=True)
        output = handler(arguments)
        if isinstance(output, BaseException):
            raise output
        return CallToolResult(content=[TextContent(type="text", text=str(output))], isError=False)

    async def close(self) -> None:
        self.closed = True

    @property
    def is_open(self) -> bool:
        return self.opened and not self.closed


def make_tool(name: str, description: str = "", properties: Optional[Dict[str, Any]] = None) -> Tool:
    return Tool(
        name=name,
        description=description,
        inputSchema={"type": "object", "properties": properties or {}},
    )


class FakeConnectionFactory:
    """Connection factory handing out planned FakeConnections per server id.

    The last planned connection for a server is reused for every further
    attempt; servers without a plan get an empty working connection.
    """

    def __init__(self):
        self.plans: Dict[str, List[FakeConnection]] = {}
        self.log: List[tuple] = []

    def add(self, server_id: str, *connections: FakeConnection) -> None:
        self.plans.setdefault(server_id, []).extend(connections)

    def attempts(self, server_id: str) -> int:
        return sum(1 for config_id, _ in self.log if config_id == server_id)

    def __call__(self, config) -> FakeConnection:
        queue = self.plans.get(config.id) or []
        if len(queue) > 1:
            connection = queue.pop(0)
        elif queue:
            connection = queue[0]
        else:
            connection = FakeConnection()
        self.log.append((config.id, connection))
        return connection


async def wait_for_state(client, state: str, timeout: float = 1.0) -> None:
    """Poll until ``client`` reaches ``state``; background reconnects run on the loop."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while client.state != state:
        if loop.time() > deadline:
            raise AssertionError(f"client stayed {client.state}, expected {state}")
        await asyncio.sleep(0.01)
