"""Unit tests for ManagedMCPClient: lazy connect, caching, backoff and failure handling."""

import asyncio

import pytest
from mcp.shared.exceptions import McpError
from mcp.types import ErrorData

from orchestrationAgent.config.settings import MCPSettings
from orchestrationAgent.tools.mcp.client import ManagedMCPClient, is_connection_error
from orchestrationAgent.utils.error_handler import (
    ServerConnectionError,
    ServerUnavailableError,
    ToolExecutionError,
)
from tests.fakes import FakeConnection, make_tool, wait_for_state


@pytest.fixture
def slow_settings():
    """Backoff long enough that a scheduled reconnect never fires during a test."""
    return MCPSettings(reconnect_base_delay=10, reconnect_max_delay=10, default_max_retries=3)


def make_client(config, settings, factory, **listeners):
    return ManagedMCPClient(config, "weather", settings=settings, connection_factory=factory, **listeners)


class TestBackoff:
    def test_exponential_delay_is_capped(self, make_config, factory):
        settings = MCPSettings(reconnect_base_delay=1, reconnect_max_delay=30)
        client = make_client(make_config(), settings, factory)
        assert [client.reconnect_delay(n) for n in range(1, 8)] == [1, 2, 4, 8, 16, 30, 30]

    def test_per_server_overrides(self, make_config, factory, mcp_settings):
        client = make_client(make_config(max_retries=7, request_timeout=5), mcp_settings, factory)
        assert client.max_retries == 7
        assert client.request_timeout == 5
        assert client.connect_timeout == mcp_settings.connect_timeout


class TestConnectionLifecycle:
    @pytest.mark.asyncio
    async def test_connects_lazily(self, make_config, factory, mcp_settings):
        factory.add("weather-1", FakeConnection(tools=[make_tool("forecast")]))
        client = make_client(make_config(), mcp_settings, factory)
        assert client.state == "disconnected"
        assert factory.attempts("weather-1") == 0

        tools = await client.list_tools()

        assert [tool.name for tool in tools] == ["forecast"]
        assert client.state == "connected"
        assert client.server_info.name == "fake"

    @pytest.mark.asyncio
    async def test_tool_list_is_cached(self, make_config, factory, mcp_settings):
        connection = FakeConnection(tools=[make_tool("forecast")])
        factory.add("weather-1", connection)
        client = make_client(make_config(), mcp_settings, factory)

        await client.list_tools()
        await client.list_tools()
        assert connection.list_calls == 1

        await client.list_tools(force_refresh=True)
        assert connection.list_calls == 2

    @pytest.mark.asyncio
    async def test_cache_expires(self, make_config, factory):
        settings = MCPSettings(tool_cache_ttl=0.01)
        connection = FakeConnection(tools=[make_tool("forecast")])
        factory.add("weather-1", connection)
        client = make_client(make_config(), settings, factory)

        await client.list_tools()
        await asyncio.sleep(0.02)
        await client.list_tools()
        assert connection.list_calls == 2

    @pytest.mark.asyncio
    async def test_state_listener(self, make_config, factory, mcp_settings):
        transitions = []
        client = make_client(
            make_config(), mcp_settings, factory,
            on_state_change=lambda server_id, old, new: transitions.append((old, new)),
        )
        await client.connect()
        await client.disconnect()

        assert transitions == [
            ("disconnected", "connecting"),
            ("connecting", "connected"),
            ("connected", "disconnected"),
        ]


class TestFailureHandling:
    @pytest.mark.asyncio
    async def test_failed_after_max_retries(self, make_config, factory, mcp_settings):
        factory.add("weather-1", FakeConnection(open_error=ConnectionRefusedError("refused")))
        client = make_client(make_config(), mcp_settings, factory)

        with pytest.raises(ServerConnectionError):
            await client.connect()
        await wait_for_state(client, "failed")

        # one initial attempt plus default_max_retries (2) reconnects
        assert factory.attempts("weather-1") == 3
        with pytest.raises(ServerUnavailableError):
            await client.ensure_connected()

    @pytest.mark.asyncio
    async def test_explicit_reconnect_recovers_from_failed(self, make_config, factory, mcp_settings):
        factory.add("weather-1", FakeConnection(open_error=OSError("down")))
        client = make_client(make_config(max_retries=0), mcp_settings, factory)

        with pytest.raises(ServerConnectionError):
            await client.connect()
        assert client.state == "failed"

        factory.plans["weather-1"] = [FakeConnection(tools=[make_tool("forecast")])]
        await client.reconnect()

        assert client.state == "connected"
        assert client.status().reconnect_attempts == 0
        assert len(await client.list_tools()) == 1

    @pytest.mark.asyncio
    async def test_requests_rejected_while_reconnecting(self, make_config, factory, slow_settings):
        factory.add("weather-1", FakeConnection(open_error=OSError("down")))
        client = make_client(make_config(), slow_settings, factory)

        with pytest.raises(ServerConnectionError):
            await client.connect()
        assert client.state == "reconnecting"

        with pytest.raises(ServerConnectionError) as exc_info:
            await client.call_tool("forecast", {})
        assert not isinstance(exc_info.value, ServerUnavailableError)
        await client.close()

    @pytest.mark.asyncio
    async def test_connection_error_during_call_schedules_reconnect(self, make_config, factory, slow_settings):
        factory.add("weather-1", FakeConnection(handlers={"forecast": lambda args: ConnectionResetError("reset")}))
        client = make_client(make_config(), slow_settings, factory)

        with pytest.raises(ServerConnectionError):
            await client.call_tool("forecast", {"city": "Berlin"})

        assert client.state == "reconnecting"
        assert client.metrics.failed_requests == 1
        await client.close()
        assert client.state == "disconnected"

    @pytest.mark.asyncio
    async def test_protocol_error_keeps_connection(self, make_config, factory, slow_settings):
        error = McpError(ErrorData(code=-32602, message="Invalid params"))
        factory.add("weather-1", FakeConnection(handlers={"forecast": lambda args: error}))
        client = make_client(make_config(), slow_settings, factory)

        with pytest.raises(ToolExecutionError):
            await client.call_tool("forecast", {})
        assert client.state == "connected"

    @pytest.mark.asyncio
    async def test_metrics(self, make_config, factory, mcp_settings):
        factory.add("weather-1", FakeConnection(handlers={"forecast": lambda args: "sunny"}))
        client = make_client(make_config(), mcp_settings, factory)

        await client.call_tool("forecast", {})
        await client.call_tool("forecast", {})

        status = client.status()
        assert status.metrics.total_requests == 2
        assert status.metrics.successful_requests == 2
        assert status.metrics.average_latency_ms >= 0
        assert status.metrics.last_connected_at is not None


class TestConnectionErrorClassification:
    def test_transport_errors(self):
        assert is_connection_error(ConnectionRefusedError())
        assert is_connection_error(asyncio.TimeoutError())
        assert is_connection_error(RuntimeError("Connection refused by peer"))

    def test_other_errors(self):
        assert not is_connection_error(ValueError("bad argument"))
        assert not is_connection_error(McpError(ErrorData(code=-32601, message="Method not found")))
