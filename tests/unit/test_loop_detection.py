"""Unit tests for LoopMonitor retry and intervention accounting."""

import asyncio

import pytest

from orchestrationAgent.monitor.loop_detection import LoopMonitor
from orchestrationAgent.planning.graph import TaskPlanInput, TaskPlanManager


@pytest.fixture
def monitor(store, loop_settings):
    return LoopMonitor(store, loop_settings)


@pytest.fixture
async def node_id(store, run_id):
    plans = TaskPlanManager(store)
    plan_input = TaskPlanInput.from_dict({
        "tasks": [{"tempId": "a", "description": "Flaky task", "agentType": "general"}],
    })
    _, nodes, _ = await plans.create_plan(run_id, plan_input)
    return nodes[0].id


class TestConfig:
    def test_defaults(self, store):
        config = LoopMonitor(store).get_config()
        assert (config.max_retries_per_task, config.max_total_interventions, config.near_limit_ratio) == (3, 10, 0.8)

    def test_update_config_validates(self, monitor):
        updated = monitor.update_config(max_retries_per_task=4)
        assert updated.max_retries_per_task == 4
        assert monitor.settings.max_total_interventions == 5

        with pytest.raises(ValueError):
            monitor.update_config(near_limit_ratio=2.0)

    def test_get_config_is_a_copy(self, monitor):
        monitor.get_config().max_retries_per_task = 99
        assert monitor.settings.max_retries_per_task == 2


class TestTaskRetries:
    @pytest.mark.asyncio
    async def test_retry_budget(self, monitor, store, run_id, node_id):
        assert (await monitor.can_retry_task(run_id, node_id)).allowed

        first = await monitor.record_task_retry(run_id, node_id)
        assert (first.new_count, first.is_last_retry, first.threshold_crossed) == (1, False, False)

        second = await monitor.record_task_retry(run_id, node_id)
        assert second.is_last_retry and second.threshold_crossed

        check = await monitor.can_retry_task(run_id, node_id)
        assert not check.allowed
        assert check.current_count == 2
        assert "retry limit" in check.reason

        assert (await store.get_node(node_id)).retry_count == 2
        assert (await store.get_orchestrator_state(run_id)).intervention_count == 1

    @pytest.mark.asyncio
    async def test_threshold_counts_one_intervention(self, monitor, store, run_id, node_id):
        for _ in range(4):
            await monitor.record_task_retry(run_id, node_id)
        assert (await store.get_orchestrator_state(run_id)).intervention_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_retries_are_all_counted(self, monitor, store, run_id, node_id):
        records = await asyncio.gather(*(monitor.record_task_retry(run_id, node_id) for _ in range(3)))

        assert sorted(record.new_count for record in records) == [1, 2, 3]
        assert sum(record.threshold_crossed for record in records) == 1

    @pytest.mark.asyncio
    async def test_unknown_run_has_no_counters(self, monitor):
        check = await monitor.can_retry_task("ghost-run", "ghost-node")
        assert check.allowed and check.current_count == 0


class TestInterventions:
    @pytest.mark.asyncio
    async def test_near_and_at_limit(self, monitor, run_id):
        records = [await monitor.record_intervention(run_id) for _ in range(5)]

        assert [r.is_near_limit for r in records] == [False, False, False, True, True]
        assert records[-1].is_at_limit
        assert not (await monitor.can_intervene(run_id)).allowed


class TestDecisions:
    @pytest.mark.asyncio
    async def test_continue_when_healthy(self, monitor, run_id, node_id):
        assert await monitor.evaluate(run_id, node_id) == "continue"
        health = await monitor.get_run_health(run_id)
        assert health.healthy and health.warnings == []

    @pytest.mark.asyncio
    async def test_exhausted_task_requests_guidance(self, monitor, run_id, node_id):
        await monitor.record_task_retry(run_id, node_id)
        await monitor.record_task_retry(run_id, node_id)

        assert await monitor.evaluate(run_id, node_id) == "request_guidance"
        assert await monitor.evaluate(run_id) == "continue"

    @pytest.mark.asyncio
    async def test_near_limit_requests_guidance(self, monitor, run_id):
        for _ in range(4):
            await monitor.record_intervention(run_id)

        assert await monitor.evaluate(run_id) == "request_guidance"
        health = await monitor.get_run_health(run_id)
        assert not health.healthy
        assert "4/5 interventions" in health.warnings[0]

    @pytest.mark.asyncio
    async def test_exhausted_interventions_abort(self, monitor, run_id):
        for _ in range(5):
            await monitor.record_intervention(run_id)
        assert await monitor.evaluate(run_id) == "abort"

    @pytest.mark.asyncio
    async def test_task_warning_in_health(self, monitor, run_id, node_id):
        await monitor.record_task_retry(run_id, node_id)
        assert (await monitor.get_run_health(run_id)).healthy

        await monitor.record_task_retry(run_id, node_id)
        health = await monitor.get_run_health(run_id)
        assert health.task_counters == {node_id: 2}
        assert any(node_id in warning for warning in health.warnings)
