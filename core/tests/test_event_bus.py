"""Tests for the EventBus pub/sub used to follow executions."""

import asyncio

import pytest

from febroflow.runtime.event_bus import EventBus, EventType, FlowEvent


class TestEventBus:
    @pytest.mark.asyncio
    async def test_subscribe_and_publish(self):
        bus = EventBus()
        received = []

        async def handler(event: FlowEvent):
            received.append(event)

        bus.subscribe([EventType.EXECUTION_STARTED], handler)
        await bus.emit_execution_started("flow-1", "exec-1", "chat-1", {"text": "hi"})
        await bus.emit_execution_completed("flow-1", "exec-1", {"done": True})

        assert len(received) == 1
        assert received[0].context_id == "chat-1"
        assert received[0].data == {"input": {"text": "hi"}}

    @pytest.mark.asyncio
    async def test_filters(self):
        bus = EventBus()
        received = []

        async def handler(event: FlowEvent):
            received.append(event.node_id)

        bus.subscribe(
            [EventType.NODE_STARTED],
            handler,
            filter_flow="flow-1",
            filter_node="a",
            filter_execution="exec-1",
        )
        await bus.emit_node_started("flow-1", "exec-1", "a", "0", "code")
        await bus.emit_node_started("flow-1", "exec-1", "b", "0", "code")
        await bus.emit_node_started("flow-2", "exec-1", "a", "0", "code")
        await bus.emit_node_started("flow-1", "exec-2", "a", "0", "code")

        assert received == ["a"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        received = []

        async def handler(event: FlowEvent):
            received.append(event)

        sub_id = bus.subscribe([EventType.CUSTOM], handler)
        assert bus.unsubscribe(sub_id) is True
        assert bus.unsubscribe(sub_id) is False

        await bus.publish(FlowEvent(type=EventType.CUSTOM, flow_id="flow-1"))
        assert received == []

    @pytest.mark.asyncio
    async def test_handler_errors_do_not_propagate(self):
        bus = EventBus()
        received = []

        async def broken(event: FlowEvent):
            raise RuntimeError("subscriber bug")

        async def healthy(event: FlowEvent):
            received.append(event)

        bus.subscribe([EventType.EXECUTION_FAILED], broken)
        bus.subscribe([EventType.EXECUTION_FAILED], healthy)

        await bus.emit_execution_failed("flow-1", "exec-1", "boom")

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_suspended_event_type(self):
        bus = EventBus()

        await bus.emit_execution_suspended("flow-1", "exec-1", paused=False, pending_nodes=["w"])
        await bus.emit_execution_suspended("flow-1", "exec-1", paused=True, pending_nodes=["w"])

        types = [e.type for e in bus.get_history()]
        assert types == [EventType.EXECUTION_PAUSED, EventType.EXECUTION_WAITING]

    @pytest.mark.asyncio
    async def test_history_is_bounded_and_filterable(self):
        bus = EventBus(max_history=3)

        for i in range(5):
            await bus.emit_node_retry("flow-1", f"exec-{i}", "a", 1, 3, "err")

        history = bus.get_history()
        assert [e.execution_id for e in history] == ["exec-4", "exec-3", "exec-2"]
        assert len(bus.get_history(execution_id="exec-3")) == 1
        assert bus.get_history(flow_id="other") == []
        assert bus.get_stats()["events_by_type"] == {"node_retry": 3}

    @pytest.mark.asyncio
    async def test_wait_for(self):
        bus = EventBus()

        async def later():
            await asyncio.sleep(0.01)
            await bus.emit_execution_cancelled("flow-1", "exec-1")

        task = asyncio.create_task(later())
        event = await bus.wait_for(EventType.EXECUTION_CANCELLED, execution_id="exec-1", timeout=2)
        await task

        assert event is not None
        assert event.execution_id == "exec-1"

    @pytest.mark.asyncio
    async def test_wait_for_timeout(self):
        bus = EventBus()

        assert await bus.wait_for(EventType.EXECUTION_COMPLETED, timeout=0.01) is None

    def test_event_to_dict(self):
        event = FlowEvent(
            type=EventType.EDGE_TRAVERSED,
            flow_id="flow-1",
            execution_id="exec-1",
            node_id="a",
            branch_id="0.1",
            data={"target_node": "b"},
        )

        as_dict = event.to_dict()

        assert as_dict["type"] == "edge_traversed"
        assert as_dict["branch_id"] == "0.1"
        assert as_dict["data"] == {"target_node": "b"}
        assert "timestamp" in as_dict
