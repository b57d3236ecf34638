"""
In-memory storage - for tests, the CLI's dry runs, and embedding the engine
in a single process that does not need to survive restarts.
"""

import asyncio
import logging

from febroflow.errors import ExecutionConflictError, ExecutionNotFoundError
from febroflow.graph.flow import ConnectionSpec, FlowDefinition, FlowSpec, NodeSpec
from febroflow.schemas.execution_state import ExecutionState
from febroflow.storage.base import ExecutionStateRepository, FlowRepository, StateMutator

logger = logging.getLogger(__name__)


class InMemoryFlowRepository(FlowRepository):
    """Flow definitions held in dictionaries, keyed by flow id."""

    def __init__(self, definitions: list[FlowDefinition] | None = None):
        self._flows: dict[str, FlowSpec] = {}
        self._nodes: dict[str, list[NodeSpec]] = {}
        self._connections: dict[str, list[ConnectionSpec]] = {}
        for definition in definitions or []:
            self.save_definition(definition)

    def save_definition(self, definition: FlowDefinition) -> None:
        """Insert or replace a flow with its nodes and connections."""
        flow_id = definition.flow.id
        self._flows[flow_id] = definition.flow.model_copy(deep=True)
        self._nodes[flow_id] = [n.model_copy(deep=True) for n in definition.nodes]
        self._connections[flow_id] = [c.model_copy(deep=True) for c in definition.connections]

    def delete_flow(self, flow_id: str) -> bool:
        """Delete a flow together with its nodes and connections."""
        if flow_id not in self._flows:
            return False
        del self._flows[flow_id]
        self._nodes.pop(flow_id, None)
        self._connections.pop(flow_id, None)
        return True

    async def get_flow(self, flow_id: str) -> FlowSpec | None:
        flow = self._flows.get(flow_id)
        return flow.model_copy(deep=True) if flow else None

    async def get_nodes_by_flow(self, flow_id: str) -> list[NodeSpec]:
        return [n.model_copy(deep=True) for n in self._nodes.get(flow_id, [])]

    async def get_connections_by_flow(self, flow_id: str) -> list[ConnectionSpec]:
        return [c.model_copy(deep=True) for c in self._connections.get(flow_id, [])]


class InMemoryExecutionStore(ExecutionStateRepository):
    """Execution states held in a dictionary, guarded by one lock."""

    def __init__(self):
        self._states: dict[str, ExecutionState] = {}
        self._lock = asyncio.Lock()

    async def create(self, state: ExecutionState) -> ExecutionState:
        async with self._lock:
            if state.id in self._states:
                raise ExecutionConflictError(state.id)

            for other in self._states.values():
                if (
                    other.is_active
                    and other.flow_id == state.flow_id
                    and other.context_id == state.context_id
                ):
                    other.is_active = False
                    other.touch()
                    logger.debug(f"Deactivated execution {other.id} for context {other.context_id}")

            stored = state.model_copy(deep=True)
            stored.is_active = True
            self._states[stored.id] = stored
            return stored.model_copy(deep=True)

    async def update(self, execution_id: str, mutator: StateMutator) -> ExecutionState:
        async with self._lock:
            current = self._states.get(execution_id)
            if current is None:
                raise ExecutionNotFoundError(execution_id)

            working = current.model_copy(deep=True)
            mutator(working)
            working.touch()
            self._states[execution_id] = working
            return working.model_copy(deep=True)

    async def get_by_id(self, execution_id: str) -> ExecutionState | None:
        state = self._states.get(execution_id)
        return state.model_copy(deep=True) if state else None

    async def get_active(self, flow_id: str, context_id: str) -> ExecutionState | None:
        for state in self._states.values():
            if state.is_active and state.flow_id == flow_id and state.context_id == context_id:
                return state.model_copy(deep=True)
        return None

    async def list_history(self, flow_id: str, limit: int | None = None) -> list[ExecutionState]:
        states = [s.model_copy(deep=True) for s in self._states.values() if s.flow_id == flow_id]
        states.sort(key=lambda s: s.started_at, reverse=True)
        return states[:limit] if limit is not None else states
