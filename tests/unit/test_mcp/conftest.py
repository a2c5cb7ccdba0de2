"""Pytest fixtures for MCP tests."""

import pytest

from orchestrationAgent.tools.mcp import ServerConfig
from tests.fakes import FakeConnectionFactory


@pytest.fixture
def factory():
    return FakeConnectionFactory()


@pytest.fixture
def make_config():
    def _make(server_id: str = "weather-1", name: str = "Weather", **overrides) -> ServerConfig:
        data = {"id": server_id, "name": name, "transport": "stdio", "command": "weather-server"}
        data.update(overrides)
        return ServerConfig.model_validate(data)
    return _make

