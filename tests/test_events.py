"""Tests for the typed event bus."""

import asyncio

import pytest

from taskwarden.scheduling.events import EventBus, SchedulerEvent, SchedulerEventType


class TestEventBus:
    def test_emit_reaches_subscribers(self):
        bus = EventBus()
        received: list[SchedulerEvent] = []

        @bus.subscribe
        def handler(event):
            received.append(event)

        event = bus.emit(SchedulerEventType.TASK_ADDED, "t1", name="Job")

        assert received == [event]
        assert event.task_id == "t1"
        assert event.data == {"name": "Job"}

    def test_failing_handler_does_not_propagate(self):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(broken)
        bus.subscribe(received.append)
        bus.emit(SchedulerEventType.TASK_REMOVED, "t1")

        assert len(received) == 1

    def test_unsubscribe(self):
        bus = EventBus()
        received = []
        bus.subscribe(received.append)
        bus.unsubscribe(received.append)
        bus.emit(SchedulerEventType.TASK_REMOVED, "t1")
        assert received == []

    def test_to_dict(self):
        event = SchedulerEvent(
            SchedulerEventType.TASK_TOGGLED, "t1", {"enabled": False}
        )
        data = event.to_dict()
        assert data["type"] == "task_toggled"
        assert data["taskId"] == "t1"
        assert data["enabled"] is False

    def test_event_names_match_wire_names(self):
        assert SchedulerEventType.TASK_EXECUTION_SKIPPED == "task_execution_skipped"
        assert SchedulerEventType.CONFIG_RELOADED == "config_reloaded"

    @pytest.mark.asyncio
    async def test_async_handler_is_scheduled(self):
        bus = EventBus()
        received = []

        async def handler(event):
            received.append(event.type)

        bus.subscribe(handler)
        bus.emit(SchedulerEventType.TASK_ARCHIVED, "t1")
        await asyncio.sleep(0)

        assert received == [SchedulerEventType.TASK_ARCHIVED]

    @pytest.mark.asyncio
    async def test_stream(self):
        bus = EventBus()
        stream = bus.stream()
        next_event = asyncio.ensure_future(anext(stream))
        await asyncio.sleep(0)

        bus.emit(SchedulerEventType.TASK_ADDED, "t1")
        event = await asyncio.wait_for(next_event, timeout=1)

        assert event.type == SchedulerEventType.TASK_ADDED
        await stream.aclose()
