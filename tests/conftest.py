"""Pytest configuration and fixtures for all tests.

This file is automatically loaded by pytest and ensures proper test environment setup.
"""

import sys
from pathlib import Path

import pytest

# Ensure project root is in PYTHONPATH for imports to work
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from orchestrationAgent.config.settings import (  # noqa: E402
    AgentSettings,
    ContextSettings,
    LoopDetectionSettings,
    MCPSettings,
)
from orchestrationAgent.state.models import OrchestratorState  # noqa: E402
from orchestrationAgent.state.store import InMemoryStateStore  # noqa: E402

from tests.fakes import RecordingSink  # noqa: E402


@pytest.fixture
def store():
    return InMemoryStateStore()


@pytest.fixture
async def run_id(store):
    """A run registered in the store."""
    await store.create_orchestrator_state(OrchestratorState(run_id="run-1", user_input="test request"))
    return "run-1"


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def context_settings():
    return ContextSettings(
        enabled=True,
        trigger_threshold=0.8,
        target_threshold=0.5,
        min_messages_to_keep=4,
        output_reserve=0,
        default_context_limit=2000,
    )


@pytest.fixture
def agent_settings():
    return AgentSettings(max_iterations=5, max_concurrent_agents=2)


@pytest.fixture
def loop_settings():
    return LoopDetectionSettings(max_retries_per_task=2, max_total_interventions=5, near_limit_ratio=0.8)


@pytest.fixture
def mcp_settings():
    return MCPSettings(
        reconnect_base_delay=0,
        reconnect_max_delay=0,
        default_max_retries=2,
        connect_timeout=1,
        request_timeout=1,
    )
