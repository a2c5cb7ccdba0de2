"""Namespaced tool ids: ``{normalized_server}__{tool_name}``."""

import re
from typing import Optional, Tuple

TOOL_ID_SEPARATOR = "__"

_INVALID_CHARS = re.compile(r"[^a-z0-9_]+")


def normalize_server_name(name: str) -> str:
    """Lowercase, collapse anything outside ``[a-z0-9_]`` into ``_``."""
    normalized = _INVALID_CHARS.sub("_", name.strip().lower())
    # The separator must stay unambiguous inside the server part
    normalized = re.sub(r"_{2,}", "_", normalized)
    return normalized.strip("_") or "server"


def format_tool_id(server_name: str, tool_name: str) -> str:
    return f"{server_name}{TOOL_ID_SEPARATOR}{tool_name}"


def parse_tool_id(tool_id: str) -> Optional[Tuple[str, str]]:
    """Split on the first separator; None when it is missing or a side is empty."""
    server, sep, tool = tool_id.partition(TOOL_ID_SEPARATOR)
    if not sep or not server or not tool:
        return None
    return server, tool


def is_remote_tool_id(tool_id: str) -> bool:
    return TOOL_ID_SEPARATOR in tool_id
