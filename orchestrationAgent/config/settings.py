"""Environment-bound configuration objects.

All settings classes load from environment variables and the project ``.env``
file. Components take their settings group in the constructor, so tests can
build groups directly instead of going through the cached root object.

Example:
    from orchestrationAgent.config.settings import get_settings

    settings = get_settings()  # Cached singleton
    trigger = settings.context.trigger_threshold
    max_agents = settings.agents.max_concurrent_agents
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


load_dotenv()


class ModelSettings(BaseSettings):
    """Model identifier, credentials and pricing.

    Prices are expressed per million tokens and used by the provider adapter
    to compute call cost.
    """

    model_id: str = Field(
        default="gpt-4o-mini",
        validation_alias=AliasChoices("MODEL_ID", "MODEL_BASE", "OPENAI_MODEL"),
    )
    api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MODEL_API_KEY", "OPENAI_API_KEY"),
    )
    base_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MODEL_BASE_URL", "OPENAI_BASE_URL"),
    )
    summary_model_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SUMMARY_MODEL_ID", "CONTEXT_SUMMARY_MODEL"),
    )
    input_price_per_million: float = Field(default=0.15, ge=0, alias="MODEL_INPUT_PRICE")
    output_price_per_million: float = Field(default=0.60, ge=0, alias="MODEL_OUTPUT_PRICE")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class ContextSettings(BaseSettings):
    """Context window budgeting.

    Thresholds are fractions of the effective limit (context limit minus the
    output reserve):
    - trigger_threshold: summarize when estimated usage exceeds it (default: 0.8)
    - target_threshold: size to compress down to (default: 0.5)
    - min_messages_to_keep: newest messages always retained (default: 4)
    """

    enabled: bool = Field(default=True, alias="CONTEXT_MANAGEMENT_ENABLED")
    trigger_threshold: float = Field(default=0.8, gt=0, le=1, alias="CONTEXT_TRIGGER_THRESHOLD")
    target_threshold: float = Field(default=0.5, gt=0, le=1, alias="CONTEXT_TARGET_THRESHOLD")
    min_messages_to_keep: int = Field(default=4, ge=1, alias="CONTEXT_MIN_MESSAGES_TO_KEEP")
    output_reserve: int = Field(default=4096, ge=0, alias="CONTEXT_OUTPUT_RESERVE")
    default_context_limit: int = Field(default=128000, ge=1024, alias="CONTEXT_DEFAULT_LIMIT")
    summary_temperature: float = Field(default=0.3, ge=0, le=2)
    summary_max_tokens: int = Field(default=2000, ge=100)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @model_validator(mode="after")
    def _check_thresholds(self) -> "ContextSettings":
        if self.target_threshold >= self.trigger_threshold:
            raise ValueError("target_threshold must be lower than trigger_threshold")
        return self


class MCPSettings(BaseSettings):
    """Remote tool provider connection defaults.

    Per-server values in the YAML config override the timeouts and retry budget.
    """

    config_path: str = Field(default="mcp_servers.yaml", alias="MCP_CONFIG_PATH")
    tool_cache_ttl: float = Field(default=300.0, gt=0, alias="MCP_TOOL_CACHE_TTL")
    reconnect_base_delay: float = Field(default=1.0, ge=0, alias="MCP_RECONNECT_BASE_DELAY")
    reconnect_max_delay: float = Field(default=30.0, ge=0, alias="MCP_RECONNECT_MAX_DELAY")
    default_max_retries: int = Field(default=5, ge=0, alias="MCP_MAX_RETRIES")
    connect_timeout: float = Field(default=30.0, gt=0, alias="MCP_CONNECT_TIMEOUT")
    request_timeout: float = Field(default=60.0, gt=0, alias="MCP_REQUEST_TIMEOUT")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class AgentSettings(BaseSettings):
    """Sub-agent execution limits."""

    max_iterations: int = Field(default=20, ge=1, le=500, alias="AGENT_MAX_ITERATIONS")
    max_concurrent_agents: int = Field(default=4, ge=1, le=64, alias="AGENT_MAX_CONCURRENT")
    temperature: float = Field(default=0.7, ge=0, le=2)
    max_tokens: int = Field(default=4096, ge=1)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class LoopDetectionSettings(BaseSettings):
    """Progress and loop detection thresholds.

    - max_retries_per_task: re-attempts allowed per task node (default: 3)
    - max_total_interventions: run-wide escalation budget (default: 10)
    - near_limit_ratio: fraction of a budget considered "near the limit" (default: 0.8)
    """

    max_retries_per_task: int = Field(default=3, ge=0, alias="LOOP_MAX_RETRIES_PER_TASK")
    max_total_interventions: int = Field(default=10, ge=1, alias="LOOP_MAX_INTERVENTIONS")
    near_limit_ratio: float = Field(default=0.8, gt=0, le=1)
    retry_on_max_iterations: bool = Field(default=False)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class OrchestratorSettings(BaseSettings):
    """Coordinator loop controls."""

    max_iterations: int = Field(default=50, ge=1, le=500, alias="ORCHESTRATOR_MAX_ITERATIONS")
    enable_direct_execution: bool = Field(default=True, alias="ORCHESTRATOR_DIRECT_EXECUTION")
    temperature: float = Field(default=0.3, ge=0, le=2)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class ObservabilitySettings(BaseSettings):
    """Logging configuration."""

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_dir: str = Field(default="logs", alias="LOG_DIR")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class Settings(BaseSettings):
    """Root application settings loaded from .env file.

    Use get_settings() to obtain a cached singleton instance.
    """

    environment: str = Field(default="dev", alias="APP_ENV")
    models: ModelSettings = Field(default_factory=ModelSettings)
    context: ContextSettings = Field(default_factory=ContextSettings)
    mcp: MCPSettings = Field(default_factory=MCPSettings)
    agents: AgentSettings = Field(default_factory=AgentSettings)
    loop_detection: LoopDetectionSettings = Field(default_factory=LoopDetectionSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
        case_sensitive=False,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton Settings instance."""
    return Settings()
