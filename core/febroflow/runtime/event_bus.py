"""
Event Bus - Pub/sub notifications about flow executions.

Lets hosts (webhook servers, UIs, the CLI) react to executions without
polling the store:
- Subscribe to lifecycle events of one execution or all of them
- Wait for a specific event (e.g. an execution reaching "waiting")
- Inspect recent history for debugging
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Types of events that can be published."""

    # Execution lifecycle
    EXECUTION_STARTED = "execution_started"
    EXECUTION_COMPLETED = "execution_completed"
    EXECUTION_FAILED = "execution_failed"
    EXECUTION_CANCELLED = "execution_cancelled"
    EXECUTION_WAITING = "execution_waiting"
    EXECUTION_PAUSED = "execution_paused"
    EXECUTION_RESUMED = "execution_resumed"

    # Node lifecycle
    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"
    NODE_RETRY = "node_retry"

    # Traversal
    EDGE_TRAVERSED = "edge_traversed"
    BRANCH_FORKED = "branch_forked"

    # Custom events
    CUSTOM = "custom"


@dataclass
class FlowEvent:
    """An event about a flow execution."""

    type: EventType
    flow_id: str
    execution_id: str | None = None
    node_id: str | None = None  # Which node emitted this event
    branch_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    context_id: str | None = None  # Conversation/session the run belongs to

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "flow_id": self.flow_id,
            "execution_id": self.execution_id,
            "node_id": self.node_id,
            "branch_id": self.branch_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "context_id": self.context_id,
        }


# Type for event handlers
EventHandler = Callable[[FlowEvent], Awaitable[None]]


@dataclass
class Subscription:
    """A subscription to events."""

    id: str
    event_types: set[EventType]
    handler: EventHandler
    filter_flow: str | None = None  # Only receive events from this flow
    filter_node: str | None = None  # Only receive events from this node
    filter_execution: str | None = None  # Only receive events from this execution


class EventBus:
    """
    Pub/sub event bus for execution notifications.

    Handler errors are logged and never propagate into the publishing run.

    Example:
        bus = EventBus()

        async def on_waiting(event: FlowEvent):
            print(f"Execution {event.execution_id} is waiting for input")

        bus.subscribe(event_types=[EventType.EXECUTION_WAITING], handler=on_waiting)
    """

    def __init__(
        self,
        max_history: int = 1000,
        max_concurrent_handlers: int = 10,
    ):
        """
        Initialize event bus.

        Args:
            max_history: Maximum events to keep in history
            max_concurrent_handlers: Maximum concurrent handler executions
        """
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[FlowEvent] = []
        self._max_history = max_history
        self._semaphore = asyncio.Semaphore(max_concurrent_handlers)
        self._subscription_counter = 0
        self._lock = asyncio.Lock()

    def subscribe(
        self,
        event_types: list[EventType],
        handler: EventHandler,
        filter_flow: str | None = None,
        filter_node: str | None = None,
        filter_execution: str | None = None,
    ) -> str:
        """
        Subscribe to events.

        Returns:
            Subscription ID (use to unsubscribe)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"

        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=set(event_types),
            handler=handler,
            filter_flow=filter_flow,
            filter_node=filter_node,
            filter_execution=filter_execution,
        )
        logger.debug(f"Subscription {sub_id} registered for {event_types}")

        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    async def publish(self, event: FlowEvent) -> None:
        """Publish an event to all matching subscribers."""
        async with self._lock:
            self._event_history.append(event)
            if len(self._event_history) > self._max_history:
                self._event_history = self._event_history[-self._max_history :]

        matching_handlers = [
            s.handler for s in list(self._subscriptions.values()) if self._matches(s, event)
        ]

        if matching_handlers:
            await self._execute_handlers(event, matching_handlers)

    def _matches(self, subscription: Subscription, event: FlowEvent) -> bool:
        """Check if a subscription matches an event."""
        if event.type not in subscription.event_types:
            return False

        if subscription.filter_flow and subscription.filter_flow != event.flow_id:
            return False

        if subscription.filter_node and subscription.filter_node != event.node_id:
            return False

        if subscription.filter_execution and subscription.filter_execution != event.execution_id:
            return False

        return True

    async def _execute_handlers(
        self,
        event: FlowEvent,
        handlers: list[EventHandler],
    ) -> None:
        """Execute handlers concurrently with rate limiting."""

        async def run_handler(handler: EventHandler) -> None:
            async with self._semaphore:
                try:
                    await handler(event)
                except Exception as e:
                    logger.error(f"Handler error for {event.type}: {e}")

        await asyncio.gather(*[run_handler(h) for h in handlers], return_exceptions=True)

    # === CONVENIENCE PUBLISHERS ===

    async def emit_execution_started(
        self,
        flow_id: str,
        execution_id: str,
        context_id: str | None = None,
        input_data: dict[str, Any] | None = None,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.EXECUTION_STARTED,
                flow_id=flow_id,
                execution_id=execution_id,
                context_id=context_id,
                data={"input": input_data or {}},
            )
        )

    async def emit_execution_completed(
        self,
        flow_id: str,
        execution_id: str,
        output: dict[str, Any] | None = None,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.EXECUTION_COMPLETED,
                flow_id=flow_id,
                execution_id=execution_id,
                data={"output": output or {}},
            )
        )

    async def emit_execution_failed(self, flow_id: str, execution_id: str, error: str) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.EXECUTION_FAILED,
                flow_id=flow_id,
                execution_id=execution_id,
                data={"error": error},
            )
        )

    async def emit_execution_cancelled(self, flow_id: str, execution_id: str) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.EXECUTION_CANCELLED,
                flow_id=flow_id,
                execution_id=execution_id,
            )
        )

    async def emit_execution_suspended(
        self,
        flow_id: str,
        execution_id: str,
        paused: bool,
        pending_nodes: list[str],
    ) -> None:
        """Emit execution_waiting or execution_paused."""
        await self.publish(
            FlowEvent(
                type=EventType.EXECUTION_PAUSED if paused else EventType.EXECUTION_WAITING,
                flow_id=flow_id,
                execution_id=execution_id,
                data={"pending_nodes": pending_nodes},
            )
        )

    async def emit_execution_resumed(
        self,
        flow_id: str,
        execution_id: str,
        additional_input: dict[str, Any] | None = None,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.EXECUTION_RESUMED,
                flow_id=flow_id,
                execution_id=execution_id,
                data={"input": additional_input or {}},
            )
        )

    async def emit_node_started(
        self,
        flow_id: str,
        execution_id: str,
        node_id: str,
        branch_id: str,
        node_type: str,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.NODE_STARTED,
                flow_id=flow_id,
                execution_id=execution_id,
                node_id=node_id,
                branch_id=branch_id,
                data={"node_type": node_type},
            )
        )

    async def emit_node_completed(
        self,
        flow_id: str,
        execution_id: str,
        node_id: str,
        branch_id: str,
        output_label: str,
        suspended: bool = False,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.NODE_COMPLETED,
                flow_id=flow_id,
                execution_id=execution_id,
                node_id=node_id,
                branch_id=branch_id,
                data={"output_label": output_label, "suspended": suspended},
            )
        )

    async def emit_node_retry(
        self,
        flow_id: str,
        execution_id: str,
        node_id: str,
        attempt: int,
        max_attempts: int,
        error: str,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.NODE_RETRY,
                flow_id=flow_id,
                execution_id=execution_id,
                node_id=node_id,
                data={"attempt": attempt, "max_attempts": max_attempts, "error": error},
            )
        )

    async def emit_edge_traversed(
        self,
        flow_id: str,
        execution_id: str,
        source_node: str,
        target_node: str,
        label: str,
        branch_id: str,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.EDGE_TRAVERSED,
                flow_id=flow_id,
                execution_id=execution_id,
                node_id=source_node,
                branch_id=branch_id,
                data={"source_node": source_node, "target_node": target_node, "label": label},
            )
        )

    async def emit_branch_forked(
        self,
        flow_id: str,
        execution_id: str,
        node_id: str,
        branch_ids: list[str],
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.BRANCH_FORKED,
                flow_id=flow_id,
                execution_id=execution_id,
                node_id=node_id,
                data={"branches": branch_ids},
            )
        )

    # === QUERY OPERATIONS ===

    def get_history(
        self,
        event_type: EventType | None = None,
        flow_id: str | None = None,
        execution_id: str | None = None,
        limit: int = 100,
    ) -> list[FlowEvent]:
        """
        Get event history with optional filtering.

        Returns:
            List of matching events (most recent first)
        """
        events = self._event_history[::-1]

        if event_type:
            events = [e for e in events if e.type == event_type]
        if flow_id:
            events = [e for e in events if e.flow_id == flow_id]
        if execution_id:
            events = [e for e in events if e.execution_id == execution_id]

        return events[:limit]

    def get_stats(self) -> dict:
        """Get event bus statistics."""
        type_counts: dict[str, int] = {}
        for event in self._event_history:
            type_counts[event.type.value] = type_counts.get(event.type.value, 0) + 1

        return {
            "total_events": len(self._event_history),
            "subscriptions": len(self._subscriptions),
            "events_by_type": type_counts,
        }

    # === WAITING OPERATIONS ===

    async def wait_for(
        self,
        event_type: EventType,
        flow_id: str | None = None,
        node_id: str | None = None,
        execution_id: str | None = None,
        timeout: float | None = None,
    ) -> FlowEvent | None:
        """
        Wait for a specific event to occur.

        Returns:
            The event if received, None if timeout
        """
        result: FlowEvent | None = None
        event_received = asyncio.Event()

        async def handler(event: FlowEvent) -> None:
            nonlocal result
            result = event
            event_received.set()

        sub_id = self.subscribe(
            event_types=[event_type],
            handler=handler,
            filter_flow=flow_id,
            filter_node=node_id,
            filter_execution=execution_id,
        )

        try:
            if timeout:
                try:
                    await asyncio.wait_for(event_received.wait(), timeout=timeout)
                except TimeoutError:
                    return None
            else:
                await event_received.wait()
            return result
        finally:
            self.unsubscribe(sub_id)
