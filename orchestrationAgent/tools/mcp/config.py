"""Remote tool provider endpoint configuration."""

from __future__ import annotations

import os
import re
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

TransportKind = Literal["stdio", "sse", "streamable_http"]

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def resolve_env_refs(value: str) -> str:
    """Replace ``${VAR}`` references with environment values (empty if unset)."""
    return _ENV_REF.sub(lambda match: os.environ.get(match.group(1), ""), value)


class AuthConfig(BaseModel):
    type: Literal["none", "bearer", "headers"] = "none"
    token: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)

    def resolve_headers(self) -> Dict[str, str]:
        headers = {key: resolve_env_refs(value) for key, value in self.headers.items()}
        if self.type == "bearer" and self.token:
            headers["Authorization"] = f"Bearer {resolve_env_refs(self.token)}"
        return headers


class ServerConfig(BaseModel):
    """One remote endpoint.

    ``connect_timeout``, ``request_timeout`` and ``max_retries`` fall back to
    MCPSettings when left unset.
    """

    id: str
    name: str
    transport: TransportKind = "stdio"
    command: Optional[str] = None
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    cwd: Optional[str] = None
    url: Optional[str] = None
    auth: AuthConfig = Field(default_factory=AuthConfig)
    connect_timeout: Optional[float] = Field(default=None, gt=0)
    request_timeout: Optional[float] = Field(default=None, gt=0)
    max_retries: Optional[int] = Field(default=None, ge=0)
    enabled: bool = True
    priority: int = 0

    @model_validator(mode="after")
    def _check_transport(self) -> "ServerConfig":
        if self.transport == "stdio" and not self.command:
            raise ValueError(f"Server '{self.id}': stdio transport requires 'command'")
        if self.transport in ("sse", "streamable_http") and not self.url:
            raise ValueError(f"Server '{self.id}': {self.transport} transport requires 'url'")
        return self

    def resolved_env(self) -> Dict[str, str]:
        return {key: resolve_env_refs(value) for key, value in self.env.items()}
