"""Unit tests for event types and EventChannel."""

import asyncio

import pytest

from orchestrationAgent.events import EventChannel, StatusEvent, TaskFailedEvent, TokenEvent


class TestEvents:
    def test_to_dict_carries_type_tag(self):
        event = TaskFailedEvent(run_id="run-1", task_node_id="n1", error="boom", will_retry=True)
        payload = event.to_dict()

        assert payload["type"] == "task.failed"
        assert payload["will_retry"] is True
        assert isinstance(payload["timestamp"], str)


class TestEventChannel:
    @pytest.mark.asyncio
    async def test_iterates_until_closed(self):
        channel = EventChannel("run-1")

        async def produce():
            for token in ("Hel", "lo"):
                channel.emit(TokenEvent(run_id="run-1", token=token))
                await asyncio.sleep(0)
            channel.close()

        producer = asyncio.create_task(produce())
        received = [event.token async for event in channel]
        await producer

        assert received == ["Hel", "lo"]

    def test_emit_after_close_is_dropped(self):
        channel = EventChannel()
        channel.emit(StatusEvent(run_id="r", status="running"))
        channel.close()
        channel.emit(StatusEvent(run_id="r", status="completed"))

        assert [event.status for event in channel.drain_nowait()] == ["running"]
        assert channel.closed
