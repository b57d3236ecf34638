"""Runtime services shared by executions."""

from febroflow.runtime.event_bus import EventBus, EventType, FlowEvent

__all__ = ["EventBus", "EventType", "FlowEvent"]
