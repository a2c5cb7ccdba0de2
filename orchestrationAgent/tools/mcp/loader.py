"""Configuration loader for remote tool provider endpoints."""

import logging
from pathlib import Path
from typing import List, Union

import yaml

from .config import ServerConfig

LOGGER = logging.getLogger(__name__)


def load_mcp_config(config_path: Union[str, Path]) -> dict:
    """
    Load MCP configuration from YAML file.

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"MCP config not found: {config_path}")

    with open(config_path, encoding="utf-8") as f:
        config = yaml.safe_load(f)

    if not config:
        return {"servers": {}}

    return config


def parse_server_configs(config: dict) -> List[ServerConfig]:
    """Build ServerConfig objects from the ``servers`` mapping.

    The mapping key is the server id; ``name`` defaults to it. Invalid entries
    are logged and skipped so one bad entry does not disable the rest.
    """
    servers = []
    for server_id, server_cfg in (config.get("servers") or {}).items():
        data = dict(server_cfg or {})
        data.setdefault("id", str(server_id))
        data.setdefault("name", str(server_id))
        try:
            servers.append(ServerConfig.model_validate(data))
        except ValueError as e:
            LOGGER.warning(f"  Invalid MCP server config '{server_id}': {e}")
    return servers


def load_server_configs(config_path: Union[str, Path]) -> List[ServerConfig]:
    return parse_server_configs(load_mcp_config(config_path))
