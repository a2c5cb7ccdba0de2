"""Application assembly for OrchestrationAgent.

Builds every component once and wires them together:
1. State store, plan manager and loop monitor
2. Context budgeter (optionally on a separate summary model)
3. Local tool registry + MCP server manager behind the composite router
4. Sub-agent pool and the orchestrator coordinator
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from langchain_core.tools import BaseTool
from langchain_openai import ChatOpenAI

from orchestrationAgent.agents.pool import SubAgentPool
from orchestrationAgent.config.settings import Settings, get_settings
from orchestrationAgent.context.budgeter import ContextBudgeter
from orchestrationAgent.monitor.loop_detection import LoopMonitor
from orchestrationAgent.orchestrator.coordinator import Orchestrator
from orchestrationAgent.planning.graph import TaskPlanManager
from orchestrationAgent.providers.base import LangChainModelProvider, ModelProvider
from orchestrationAgent.state.store import InMemoryStateStore, StateStore
from orchestrationAgent.tools.builtin import BUILTIN_TOOLS
from orchestrationAgent.tools.composite import CompositeToolRouter
from orchestrationAgent.tools.mcp import MCPServerManager, ServerConfig, load_server_configs
from orchestrationAgent.tools.registry import LocalToolRegistry

LOGGER = logging.getLogger(__name__)


@dataclass
class OrchestrationApp:
    settings: Settings
    store: StateStore
    plans: TaskPlanManager
    monitor: LoopMonitor
    budgeter: ContextBudgeter
    local_tools: LocalToolRegistry
    mcp: MCPServerManager
    router: CompositeToolRouter
    pool: SubAgentPool
    orchestrator: Orchestrator

    async def shutdown(self) -> None:
        """Cancel running agents and close MCP connections."""
        await self.pool.shutdown()
        await self.mcp.shutdown()
        LOGGER.info("Orchestration app shut down")


def build_model_provider(settings: Settings, model_id: Optional[str] = None) -> LangChainModelProvider:
    """Build a provider around a ChatOpenAI-compatible client from model settings."""
    models = settings.models
    model_id = model_id or models.model_id
    if not models.api_key:
        raise RuntimeError(f"Missing API key for model {model_id}; set MODEL_API_KEY in .env")
    kwargs = {"model": model_id, "api_key": models.api_key}
    if models.base_url:
        kwargs["base_url"] = models.base_url
    return LangChainModelProvider(
        ChatOpenAI(**kwargs),
        model_id=model_id,
        input_price_per_million=models.input_price_per_million,
        output_price_per_million=models.output_price_per_million,
    )


def _resolve_mcp_configs(settings: Settings, configs: Optional[Iterable[ServerConfig]]) -> List[ServerConfig]:
    if configs is not None:
        return list(configs)
    path = Path(settings.mcp.config_path)
    if not path.exists():
        LOGGER.info(f"No MCP config at {path}; running with local tools only")
        return []
    return load_server_configs(path)


def build_orchestration_app(
    provider: ModelProvider,
    settings: Optional[Settings] = None,
    summary_provider: Optional[ModelProvider] = None,
    local_tools: Optional[Iterable[BaseTool]] = None,
    mcp_configs: Optional[Iterable[ServerConfig]] = None,
    store: Optional[StateStore] = None,
) -> OrchestrationApp:
    """Build the orchestration application.

    Args:
        provider: Model provider used by the orchestrator and sub-agents
        settings: Settings to use (default: ``get_settings()``)
        summary_provider: Optional cheaper provider for context summaries
        local_tools: LangChain tools for the local registry (default: built-in tools)
        mcp_configs: Endpoint configs; loaded from ``settings.mcp.config_path`` when omitted
        store: State store (default: a fresh in-memory store)

    Returns:
        OrchestrationApp with every component wired
    """
    settings = settings or get_settings()
    store = store or InMemoryStateStore()

    plans = TaskPlanManager(store)
    monitor = LoopMonitor(store, settings.loop_detection)
    budgeter = ContextBudgeter(summary_provider or provider, settings.context)

    registry = LocalToolRegistry(BUILTIN_TOOLS if local_tools is None else local_tools)
    mcp = MCPServerManager(_resolve_mcp_configs(settings, mcp_configs), settings.mcp)
    router = CompositeToolRouter(registry, mcp)

    pool = SubAgentPool(provider, router, store, budgeter, plans, monitor, settings.agents)
    orchestrator = Orchestrator(provider, router, store, budgeter, plans, pool, monitor, settings.orchestrator)

    LOGGER.info(
        f"Orchestration app built: {len(registry.list_tools())} local tools, "
        f"{len(mcp.list_servers())} MCP servers, max {settings.agents.max_concurrent_agents} concurrent agents"
    )
    return OrchestrationApp(
        settings=settings,
        store=store,
        plans=plans,
        monitor=monitor,
        budgeter=budgeter,
        local_tools=registry,
        mcp=mcp,
        router=router,
        pool=pool,
        orchestrator=orchestrator,
    )
