"""Unit tests for the Orchestrator coordinator, wired through build_orchestration_app."""

import asyncio
import json

import pytest
from langchain_core.messages import SystemMessage, ToolMessage

from orchestrationAgent.config.settings import (
    AgentSettings,
    LoopDetectionSettings,
    OrchestratorSettings,
    Settings,
)
from orchestrationAgent.agents.runner import GUIDANCE_PREFIX
from orchestrationAgent.orchestrator.coordinator import ATTENTION_MESSAGE, PLAN_DONE_MESSAGE
from orchestrationAgent.orchestrator.prompts import PLAN_UPDATE_PREFIX
from orchestrationAgent.runtime.app import build_orchestration_app
from tests.fakes import FakeProvider, RecordingSink, text_response, tool_response


def is_sub_agent_call(options) -> bool:
    return "## Your Task" in (options.system_prompt or "")


def echo_task(messages, options):
    return text_response(f"done: {messages[0].content.splitlines()[0]}")


def failing_task(messages, options):
    raise RuntimeError("tool backend down")


def last_tool_payload(messages):
    message = next(m for m in reversed(messages) if isinstance(m, ToolMessage))
    return json.loads(message.content)


def tool_payloads(messages):
    """Latest payload per tool name."""
    return {m.name: json.loads(m.content) for m in messages if isinstance(m, ToolMessage)}


def plan_update(messages):
    """Report of the plan update that must be the newest message."""
    message = messages[-1]
    assert isinstance(message, SystemMessage)
    assert message.content.startswith(PLAN_UPDATE_PREFIX)
    return json.loads(message.content[len(PLAN_UPDATE_PREFIX):])


def is_task(options, name) -> bool:
    return f"## Your Task\nTask {name}" in options.system_prompt


class ScriptedModel:
    """Routes sub-agent calls to ``agent`` and orchestrator calls through ``script`` in order."""

    def __init__(self, script, agent=echo_task):
        self.script = list(script)
        self.agent = agent
        self.orchestrator_messages = []

    def __call__(self, messages, options):
        if is_sub_agent_call(options):
            return self.agent(messages, options)
        self.orchestrator_messages.append(messages)
        step = self.script.pop(0)
        return step(messages, options) if callable(step) else step


def plan_call(*tasks):
    return tool_response(("create_task_plan", {
        "reasoning": "split the work",
        "tasks": [
            {"tempId": temp_id, "description": f"Task {temp_id}", "agentType": "general", "dependencies": list(deps)}
            for temp_id, deps in tasks
        ],
    }))


@pytest.fixture
def settings():
    return Settings(
        agents=AgentSettings(max_iterations=3, max_concurrent_agents=2),
        loop_detection=LoopDetectionSettings(max_retries_per_task=2, max_total_interventions=5),
        orchestrator=OrchestratorSettings(max_iterations=4),
    )


@pytest.fixture
def make_app(settings):
    def _make(model: ScriptedModel):
        provider = FakeProvider(responder=model)
        return build_orchestration_app(provider, settings=settings, mcp_configs=[])
    return _make


class TestDirectAnswers:
    @pytest.mark.asyncio
    async def test_answers_without_tools(self, make_app, sink):
        app = make_app(ScriptedModel([text_response("Hello! How can I help?")]))

        result = await app.orchestrator.execute_run("hi", run_id="run-direct", events=sink)

        assert result.status == "completed"
        assert result.response == "Hello! How can I help?"
        assert result.total_tokens == 15
        assert result.plan_id is None
        assert [event.status for event in sink.of_type("orchestrator.status")] == ["running", "completed"]
        assert sink.of_type("agent.final")[0].content == "Hello! How can I help?"

        state = await app.store.get_orchestrator_state("run-direct")
        assert state.status == "completed"
        assert state.final_response == "Hello! How can I help?"

    @pytest.mark.asyncio
    async def test_respond_to_user_ends_the_run(self, make_app):
        model = ScriptedModel([tool_response(("respond_to_user", {"message": "All set."}))])
        app = make_app(model)

        result = await app.orchestrator.execute_run("thanks")

        assert result.response == "All set."
        assert len(model.orchestrator_messages) == 1

    @pytest.mark.asyncio
    async def test_direct_tool_execution(self, make_app):
        model = ScriptedModel([
            tool_response(("calculate", {"expression": "2+2"})),
            lambda messages, options: text_response(f"It is {last_tool_payload(messages)['output']}"),
        ])
        app = make_app(model)

        result = await app.orchestrator.execute_run("what is 2+2?")
        assert result.response == "It is 4"

    @pytest.mark.asyncio
    async def test_unknown_tool_is_reported_to_model(self, make_app):
        model = ScriptedModel([
            tool_response(("teleport", {})),
            lambda messages, options: text_response(last_tool_payload(messages)["error"]),
        ])
        app = make_app(model)

        result = await app.orchestrator.execute_run("beam me up")
        assert result.response == "Unknown tool: teleport"

    @pytest.mark.asyncio
    async def test_plan_status_without_plan(self, make_app):
        model = ScriptedModel([
            tool_response(("get_plan_status", {})),
            lambda messages, options: text_response(str(last_tool_payload(messages)["plan"])),
        ])
        result = await make_app(model).orchestrator.execute_run("status?")
        assert result.response == "None"


class TestPlans:
    @pytest.mark.asyncio
    async def test_plan_is_driven_to_completion(self, make_app, sink):
        captured = {}

        def summarize(messages, options):
            captured["report"] = plan_update(messages)
            return text_response("Both tasks are done.")

        app = make_app(ScriptedModel([plan_call(("a", []), ("b", ["a"])), summarize]))

        result = await app.orchestrator.execute_run("do a then b", events=sink)

        assert result.status == "completed"
        assert result.response == "Both tasks are done."
        report = captured["report"]
        assert report["success"] and report["complete"]
        assert report["message"] == PLAN_DONE_MESSAGE
        assert [task["result"] for task in report["tasks"]] == ["done: Task a", "done: Task b"]

        plan = await app.plans.get_plan(result.plan_id)
        assert plan.status == "completed"
        assert len(sink.of_type("plan.created")[0].tasks) == 2
        assert len(sink.of_type("task.completed")) == 2
        assert "summarizing" in [event.status for event in sink.of_type("orchestrator.status")]
        # orchestrator calls plus one call per sub-agent
        assert result.total_tokens == 15 * 4

    @pytest.mark.asyncio
    async def test_delegate_task_creates_single_node_plan(self, make_app):
        app = make_app(ScriptedModel([
            tool_response(("delegate_task", {
                "description": "Research flights",
                "agentType": "research",
                "instructions": "Only direct flights",
            })),
            text_response("Found flights."),
        ]))

        result = await app.orchestrator.execute_run("find flights")

        [node] = await app.plans.get_nodes(result.plan_id)
        assert node.agent_type == "research"
        assert node.description.endswith("Instructions: Only direct flights")
        assert node.status == "completed"

    @pytest.mark.asyncio
    async def test_invalid_plan_returns_errors(self, make_app):
        app = make_app(ScriptedModel([
            plan_call(("a", ["a"])),
            lambda messages, options: text_response("; ".join(last_tool_payload(messages)["errors"])),
        ]))

        result = await app.orchestrator.execute_run("loop forever")

        assert result.status == "completed"
        assert "Task a depends on itself" in result.response
        assert result.plan_id is None

    @pytest.mark.asyncio
    async def test_failing_task_is_escalated_once(self, make_app, sink):
        captured = {}

        def summarize(messages, options):
            captured["report"] = plan_update(messages)
            return text_response("Task a failed.")

        app = make_app(ScriptedModel([plan_call(("a", []), ("b", ["a"])), summarize], agent=failing_task))

        result = await app.orchestrator.execute_run("do a then b", events=sink)

        assert result.status == "completed"
        statuses = {task["status"] for task in captured["report"]["tasks"]}
        assert statuses == {"failed", "cancelled"}
        assert not captured["report"]["success"]
        assert len(sink.of_type("agent.intervention")) == 1
        assert "plan_failed" in [event.status for event in sink.of_type("orchestrator.status")]
        assert (await app.plans.get_plan(result.plan_id)).status == "failed"

    @pytest.mark.asyncio
    async def test_modify_plan_adds_follow_up(self, make_app):
        def add_follow_up(messages, options):
            first_id = plan_update(messages)["tasks"][0]["id"]
            return tool_response(("modify_plan", {
                "addTasks": [{"description": "Task followup", "agentType": "general", "dependencies": [first_id]}],
            }))

        def summarize(messages, options):
            added = last_tool_payload(messages)["added"]
            return text_response(f"added={len(added)} complete={plan_update(messages)['complete']}")

        app = make_app(ScriptedModel([plan_call(("a", [])), add_follow_up, summarize]))

        result = await app.orchestrator.execute_run("do a, then more")

        assert result.response == "added=1 complete=True"
        nodes = await app.plans.get_nodes(result.plan_id)
        assert [node.status for node in nodes] == ["completed", "completed"]
        assert (await app.plans.get_plan(result.plan_id)).status == "completed"


class TestFailures:
    @pytest.mark.asyncio
    async def test_iteration_limit_fails_run(self, make_app, sink):
        app = make_app(ScriptedModel([tool_response(("get_plan_status", {})) for _ in range(4)]))

        result = await app.orchestrator.execute_run("spin", run_id="run-spin", events=sink)

        assert result.status == "failed"
        assert "maximum iterations" in result.error
        assert sink.of_type("agent.error")[0].error == result.error
        assert (await app.store.get_orchestrator_state("run-spin")).status == "failed"

    @pytest.mark.asyncio
    async def test_provider_error_fails_run(self, make_app):
        def broken(messages, options):
            raise RuntimeError("provider offline")

        result = await make_app(ScriptedModel([broken])).orchestrator.execute_run("hello")

        assert result.status == "failed"
        assert result.error == "provider offline"


class TestExternalControl:
    @pytest.mark.asyncio
    async def test_controls_for_unknown_run(self, make_app):
        app = make_app(ScriptedModel([]))

        assert not await app.orchestrator.send_guidance("ghost", "task-1", "hurry")
        assert not await app.orchestrator.cancel_task("ghost", "task-1")


class ReleasingSink(RecordingSink):
    """Sets ``release`` once a guide intervention reaches an agent."""

    def __init__(self, release: asyncio.Event):
        super().__init__()
        self.release = release

    def emit(self, event) -> None:
        super().emit(event)
        if event.type == "agent.intervention" and getattr(event, "action", None) == "guide":
            self.release.set()


def running_task_id(report) -> str:
    return next(task["id"] for task in report["tasks"] if task["status"] == "in_progress")


class TestInterventions:
    @pytest.mark.asyncio
    async def test_attention_returns_control_while_other_tasks_run(self, make_app, sink):
        release = asyncio.Event()
        captured = {}

        async def agent(messages, options):
            if is_task(options, "a"):
                raise RuntimeError("tool backend down")
            await release.wait()
            return echo_task(messages, options)

        def decide(messages, options):
            report = plan_update(messages)
            captured["decision"] = report
            release.set()
            return tool_response(("mark_task_failed", {
                "taskId": report["attention"][0]["taskId"],
                "error": "backend down",
                "shouldRetry": True,
            }))

        def summarize(messages, options):
            captured["verdict"] = last_tool_payload(messages)
            captured["report"] = plan_update(messages)
            return text_response("b done, a failed")

        app = make_app(ScriptedModel([plan_call(("a", []), ("b", [])), decide, summarize], agent=agent))

        result = await app.orchestrator.execute_run("do a and b", events=sink)

        assert result.status == "completed"
        decision = captured["decision"]
        assert decision["message"] == ATTENTION_MESSAGE
        assert not decision["complete"]
        [item] = decision["attention"]
        statuses = {task["id"]: task["status"] for task in decision["tasks"]}
        assert statuses[item["taskId"]] == "failed"
        assert sorted(statuses.values()) == ["failed", "in_progress"]

        # retries were already used up by the pool
        verdict = captured["verdict"]
        assert verdict["action"] == "failed"
        assert verdict["error"].endswith("(max retries reached)")

        report = captured["report"]
        assert report["message"] == PLAN_DONE_MESSAGE
        assert "attention" not in report
        assert sorted(task["status"] for task in report["tasks"]) == ["completed", "failed"]
        assert "awaiting_decision" in [event.status for event in sink.of_type("orchestrator.status")]
        assert len(sink.of_type("agent.intervention")) == 1

    @pytest.mark.asyncio
    async def test_mark_task_failed_retries_with_strategy(self, make_app, sink):
        captured = {}

        def agent(messages, options):
            if is_task(options, "a") and "Retry strategy" not in options.system_prompt:
                return tool_response(("get_current_time", {}))
            return echo_task(messages, options)

        def retry(messages, options):
            report = plan_update(messages)
            captured["first"] = report
            task_a = report["tasks"][0]["id"]
            return tool_response(("mark_task_failed", {
                "taskId": task_a,
                "error": "kept calling tools",
                "shouldRetry": True,
                "retryStrategy": "Answer without tools",
            }))

        def summarize(messages, options):
            captured["verdict"] = last_tool_payload(messages)
            captured["report"] = plan_update(messages)
            return text_response("Both tasks are done.")

        app = make_app(ScriptedModel([plan_call(("a", []), ("b", ["a"])), retry, summarize], agent=agent))

        result = await app.orchestrator.execute_run("do a then b", events=sink)

        assert result.status == "completed"
        first = captured["first"]
        assert [task["status"] for task in first["tasks"]] == ["failed", "cancelled"]
        assert "attention" not in first

        verdict = captured["verdict"]
        assert verdict["action"] == "retry"
        assert verdict["retryCount"] == 1

        report = captured["report"]
        assert report["success"] and report["complete"]
        assert [task["result"] for task in report["tasks"]] == ["done: Task a", "done: Task b"]
        assert (await app.plans.get_plan(result.plan_id)).status == "completed"
        assert any(event.will_retry for event in sink.of_type("task.failed"))

    @pytest.mark.asyncio
    async def test_monitor_and_guide_running_agent(self, make_app):
        release = asyncio.Event()
        sink = ReleasingSink(release)
        captured = {}

        async def agent(messages, options):
            if is_task(options, "a"):
                raise RuntimeError("tool backend down")
            if not release.is_set():
                await release.wait()
                return tool_response(("get_current_time", {}))
            guidance = [
                m.content for m in messages
                if isinstance(m, SystemMessage) and m.content.startswith(GUIDANCE_PREFIX)
            ]
            return text_response(f"guided: {guidance}")

        def monitor_and_guide(messages, options):
            task_b = running_task_id(plan_update(messages))
            return tool_response(
                ("monitor_agent", {"agentId": task_b}),
                ("intervene_agent", {
                    "agentId": task_b,
                    "action": "guide",
                    "reason": "keep units consistent",
                    "guidance": "Use metric units",
                }),
            )

        def summarize(messages, options):
            captured.update(tool_payloads(messages))
            captured["report"] = plan_update(messages)
            return text_response("done")

        app = make_app(ScriptedModel([plan_call(("a", []), ("b", [])), monitor_and_guide, summarize], agent=agent))

        result = await app.orchestrator.execute_run("do a and b", events=sink)

        assert result.status == "completed"
        monitored = captured["monitor_agent"]
        assert monitored["success"]
        assert monitored["status"] == "running"
        assert monitored["taskDescription"] == "Task b"

        guided = captured["intervene_agent"]
        assert guided["success"]
        # the exhausted retries on task a already used one intervention
        assert guided["interventionCount"] == 2
        assert not guided["nearLimit"]

        results = [task["result"] for task in captured["report"]["tasks"] if task["status"] == "completed"]
        assert results == [f"guided: ['{GUIDANCE_PREFIX}: Use metric units']"]
        actions = [event.action for event in sink.of_type("agent.intervention")]
        assert actions == [None, "guide"]

    @pytest.mark.asyncio
    async def test_cancel_agent_stops_running_task(self, make_app):
        holder = {}
        captured = {}

        async def agent(messages, options):
            if is_task(options, "a"):
                raise RuntimeError("tool backend down")
            pool = holder["app"].pool
            while not any(handle.runner.is_cancelled for handle in pool.get_active_agents()):
                await asyncio.sleep(0.01)
            return text_response("stopped")

        def cancel(messages, options):
            return tool_response(("cancel_agent", {
                "agentId": running_task_id(plan_update(messages)),
                "reason": "no longer needed",
            }))

        def summarize(messages, options):
            captured["cancel"] = last_tool_payload(messages)
            captured["report"] = plan_update(messages)
            return text_response("stopped b")

        app = make_app(ScriptedModel([plan_call(("a", []), ("b", [])), cancel, summarize], agent=agent))
        holder["app"] = app

        result = await app.orchestrator.execute_run("do a and b")

        assert result.status == "completed"
        assert captured["cancel"]["success"]
        assert captured["cancel"]["status"] == "cancelled"
        assert sorted(task["status"] for task in captured["report"]["tasks"]) == ["cancelled", "failed"]
        assert not app.pool.has_active_agents()

    @pytest.mark.asyncio
    async def test_intervention_limit_aborts_run(self):
        release = asyncio.Event()
        sink = ReleasingSink(release)
        captured = {}

        async def agent(messages, options):
            if is_task(options, "a"):
                raise RuntimeError("tool backend down")
            if not release.is_set():
                await release.wait()
                return tool_response(("get_current_time", {}))
            return text_response("finished anyway")

        def guide_twice(messages, options):
            task_b = running_task_id(plan_update(messages))
            captured["task_b"] = task_b
            args = {"agentId": task_b, "action": "guide", "reason": "focus", "guidance": "Be brief"}
            return tool_response(("intervene_agent", args), ("intervene_agent", args))

        model = ScriptedModel([plan_call(("a", []), ("b", [])), guide_twice])
        settings = Settings(
            agents=AgentSettings(max_iterations=3, max_concurrent_agents=2),
            loop_detection=LoopDetectionSettings(max_retries_per_task=2, max_total_interventions=2),
            orchestrator=OrchestratorSettings(max_iterations=4),
        )
        app = build_orchestration_app(FakeProvider(responder=model), settings=settings, mcp_configs=[])

        result = await app.orchestrator.execute_run("do a and b", run_id="run-limit", events=sink)

        assert result.status == "failed"
        assert "intervention limit" in result.error
        # the second guide was refused at the limit
        assert [event.action for event in sink.of_type("agent.intervention")] == [None, "guide"]
        assert (await app.store.get_orchestrator_state("run-limit")).intervention_count == 2
        assert not app.pool.has_active_agents("run-limit")
        node_b = await app.plans.get_node(captured["task_b"])
        assert node_b.status in ("cancelled", "completed")

    @pytest.mark.asyncio
    async def test_intervention_tools_reject_bad_requests(self, make_app):
        captured = {}

        def summarize(messages, options):
            captured.update(tool_payloads(messages))
            return text_response("nothing to do")

        app = make_app(ScriptedModel([
            tool_response(
                ("intervene_agent", {"agentId": "agent-x", "action": "pause", "reason": "wait"}),
                ("monitor_agent", {"agentId": "agent-x"}),
                ("cancel_agent", {"agentId": "agent-x"}),
                ("mark_task_failed", {"taskId": "task-x", "error": "broken"}),
            ),
            summarize,
        ]))

        await app.orchestrator.execute_run("anything")

        assert "Invalid action 'pause'" in captured["intervene_agent"]["error"]
        assert captured["monitor_agent"]["error"] == "Unknown agent: agent-x"
        assert captured["cancel_agent"]["error"] == "No running agent for id: agent-x"
        assert not captured["mark_task_failed"]["success"]
