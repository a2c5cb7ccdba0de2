"""Unit tests for the graph routing functions."""

from orchestrationAgent.graph.routing import (
    agent_route,
    agent_tools_route,
    execute_route,
    planner_route,
    tools_route,
)
from orchestrationAgent.providers.base import ToolCallRequest


def orchestration_state(**overrides):
    state = {"messages": [], "run_id": "run-1", "iterations": 1, "max_iterations": 5}
    state.update(overrides)
    return state


class TestOrchestratorRouting:
    def test_planner_routes_tool_calls(self):
        call = ToolCallRequest(id="call_1", name="get_plan_status", arguments="{}")
        assert planner_route(orchestration_state(tool_calls=[call])) == "tools"
        assert planner_route(orchestration_state(tool_calls=[])) == "end"
        assert planner_route(orchestration_state()) == "end"

    def test_final_response_wins_over_everything(self):
        state = orchestration_state(
            final_response="All set.", monitor_decision="abort", plan_pending=True, needs_compression=True,
        )
        assert tools_route(state) == "end"

    def test_abort_ends_the_run(self):
        assert tools_route(orchestration_state(monitor_decision="abort", plan_pending=True)) == "end"
        assert execute_route(orchestration_state(monitor_decision="abort")) == "end"

    def test_iteration_limit_ends_before_plan_work(self):
        state = orchestration_state(iterations=5, plan_pending=True)
        assert tools_route(state) == "end"

    def test_plan_work_runs_before_compression(self):
        state = orchestration_state(plan_pending=True, needs_compression=True, monitor_decision="request_guidance")
        assert tools_route(state) == "execute"
        assert tools_route(orchestration_state(needs_compression=True)) == "summarization"
        assert tools_route(orchestration_state(monitor_decision="continue")) == "planner"

    def test_execute_returns_to_planner(self):
        assert execute_route(orchestration_state()) == "planner"
        assert execute_route(orchestration_state(needs_compression=True)) == "summarization"


class TestAgentRouting:
    def test_agent_route(self):
        call = ToolCallRequest(id="call_1", name="calculate", arguments='{"expression": "1+1"}')
        assert agent_route({"pending_calls": [call]}) == "tools"
        assert agent_route({"pending_calls": [], "output": "done"}) == "end"
        assert agent_route({"pending_calls": [call], "cancelled": True}) == "end"

    def test_agent_tools_route(self):
        assert agent_tools_route({"iterations": 1, "max_iterations": 3}) == "agent"
        assert agent_tools_route({"iterations": 3, "max_iterations": 3}) == "end"
        assert agent_tools_route({"iterations": 1, "max_iterations": 3, "cancelled": True}) == "end"
        assert agent_tools_route({"iterations": 1, "max_iterations": 3, "needs_compression": True}) == "summarization"
