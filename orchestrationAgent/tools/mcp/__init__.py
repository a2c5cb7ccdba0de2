"""Remote tool provider (MCP) integration."""

from .client import ConnectionMetrics, ManagedMCPClient, ServerStatus, is_connection_error
from .config import AuthConfig, ServerConfig
from .connection import MCPConnection, ServerInfo, create_connection
from .loader import load_mcp_config, load_server_configs, parse_server_configs
from .manager import MCPServerManager
from .naming import (
    TOOL_ID_SEPARATOR,
    format_tool_id,
    is_remote_tool_id,
    normalize_server_name,
    parse_tool_id,
)

__all__ = [
    "AuthConfig",
    "ConnectionMetrics",
    "MCPConnection",
    "MCPServerManager",
    "ManagedMCPClient",
    "ServerConfig",
    "ServerInfo",
    "ServerStatus",
    "TOOL_ID_SEPARATOR",
    "create_connection",
    "format_tool_id",
    "is_connection_error",
    "is_remote_tool_id",
    "load_mcp_config",
    "load_server_configs",
    "normalize_server_name",
    "parse_server_configs",
    "parse_tool_id",
]
