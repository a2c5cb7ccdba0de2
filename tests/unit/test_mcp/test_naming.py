"""Unit tests for namespaced tool ids."""

from orchestrationAgent.tools.mcp.naming import (
    format_tool_id,
    is_remote_tool_id,
    normalize_server_name,
    parse_tool_id,
)


class TestNormalizeServerName:
    def test_lowercases_and_replaces_invalid_chars(self):
        assert normalize_server_name("My Weather-API") == "my_weather_api"

    def test_collapses_separator_runs(self):
        assert normalize_server_name("a__b") == "a_b"
        assert "__" not in normalize_server_name("x  --  y")

    def test_empty_name_falls_back(self):
        assert normalize_server_name("!!!") == "server"


class TestToolIds:
    def test_format_and_parse(self):
        tool_id = format_tool_id("weather", "get_forecast")
        assert tool_id == "weather__get_forecast"
        assert parse_tool_id(tool_id) == ("weather", "get_forecast")

    def test_tool_name_may_contain_separator(self):
        assert parse_tool_id("weather__get__forecast") == ("weather", "get__forecast")

    def test_invalid_ids(self):
        assert parse_tool_id("calculate") is None
        assert parse_tool_id("__tool") is None
        assert parse_tool_id("server__") is None

    def test_is_remote(self):
        assert is_remote_tool_id("weather__forecast")
        assert not is_remote_tool_id("get_current_time")
