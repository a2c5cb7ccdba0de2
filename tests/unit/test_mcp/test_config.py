"""Unit tests for endpoint configuration and the YAML loader."""

import pytest
from mcp.types import CallToolResult, TextContent
from pydantic import ValidationError

from orchestrationAgent.tools.mcp import ServerConfig, load_server_configs, parse_server_configs
from orchestrationAgent.tools.mcp.converter import convert_call_result, to_tool_definition
from tests.fakes import make_tool


class TestServerConfig:
    def test_stdio_requires_command(self):
        with pytest.raises(ValidationError):
            ServerConfig(id="a", name="a", transport="stdio")

    def test_http_requires_url(self):
        with pytest.raises(ValidationError):
            ServerConfig(id="a", name="a", transport="streamable_http")

    def test_env_refs_resolved_in_auth_headers(self, monkeypatch):
        monkeypatch.setenv("SEARCH_TOKEN", "secret")
        config = ServerConfig.model_validate({
            "id": "search",
            "name": "search",
            "transport": "sse",
            "url": "http://localhost/sse",
            "auth": {"type": "bearer", "token": "${SEARCH_TOKEN}", "headers": {"X-Team": "core"}},
        })
        assert config.auth.resolve_headers() == {"X-Team": "core", "Authorization": "Bearer secret"}


class TestLoader:
    def test_invalid_entries_are_skipped(self):
        configs = parse_server_configs({
            "servers": {
                "files": {"command": "files-server", "args": ["--root", "."]},
                "broken": {"transport": "sse"},
            }
        })
        assert [config.id for config in configs] == ["files"]
        assert configs[0].name == "files"

    def test_load_from_yaml(self, tmp_path):
        path = tmp_path / "mcp_servers.yaml"
        path.write_text(
            "servers:\n"
            "  search:\n"
            "    name: web-search\n"
            "    transport: streamable_http\n"
            "    url: https://example.com/mcp\n"
            "    priority: 5\n",
            encoding="utf-8",
        )
        [config] = load_server_configs(path)
        assert (config.id, config.name, config.priority) == ("search", "web-search", 5)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_server_configs(tmp_path / "absent.yaml")

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_server_configs(path) == []


class TestConverter:
    def test_tool_definition(self):
        definition = to_tool_definition("weather", "Weather", make_tool("forecast", "Daily forecast"))
        assert definition.id == "weather__forecast"
        assert definition.name == "forecast"
        assert definition.description == "[MCP: Weather] Daily forecast"
        assert definition.source == "mcp"

    def test_json_text_is_decoded(self):
        result = convert_call_result(CallToolResult(content=[TextContent(type="text", text='{"temp": 21}')]))
        assert result.success
        assert result.output == {"temp": 21}

    def test_multiple_text_parts_joined(self):
        result = convert_call_result(CallToolResult(content=[
            TextContent(type="text", text="line 1"),
            TextContent(type="text", text="line 2"),
        ]))
        assert result.output == "line 1\nline 2"

    def test_error_result(self):
        result = convert_call_result(CallToolResult(content=[TextContent(type="text", text="bad city")], isError=True))
        assert not result.success
        assert result.error == "bad city"
