"""
Storage interfaces consumed by the engine.

FlowRepository is read-only from the engine's point of view: definitions are
created and edited elsewhere. ExecutionStateRepository is the durable home of
every run and the only state shared between concurrent executions.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable

from febroflow.graph.flow import ConnectionSpec, FlowSpec, NodeSpec
from febroflow.schemas.execution_state import ExecutionState

StateMutator = Callable[[ExecutionState], None]


class FlowRepository(ABC):
    """Read access to flow definitions."""

    @abstractmethod
    async def get_flow(self, flow_id: str) -> FlowSpec | None: ...

    @abstractmethod
    async def get_nodes_by_flow(self, flow_id: str) -> list[NodeSpec]: ...

    @abstractmethod
    async def get_connections_by_flow(self, flow_id: str) -> list[ConnectionSpec]: ...


class ExecutionStateRepository(ABC):
    """
    Durable storage of execution states.

    Implementations must:
    - serialize all mutations (one writer at a time)
    - keep at most one active state per (flow_id, context_id), deactivating
      the previous one in the same critical section as ``create``
    - hand out copies, so callers never mutate stored state by accident
    """

    @abstractmethod
    async def create(self, state: ExecutionState) -> ExecutionState:
        """
        Insert a new state and deactivate the previous active one for its pair.

        Raises:
            ExecutionConflictError: a state with the same id already exists
        """

    @abstractmethod
    async def update(self, execution_id: str, mutator: StateMutator) -> ExecutionState:
        """
        Read-modify-write one state atomically.

        ``mutator`` is applied to a copy of the stored state; if it raises,
        nothing is written and the exception propagates.

        Raises:
            ExecutionNotFoundError: no state with that id
        """

    @abstractmethod
    async def get_by_id(self, execution_id: str) -> ExecutionState | None: ...

    @abstractmethod
    async def get_active(self, flow_id: str, context_id: str) -> ExecutionState | None: ...

    @abstractmethod
    async def list_history(self, flow_id: str, limit: int | None = None) -> list[ExecutionState]:
        """States of a flow, most recently started first."""
