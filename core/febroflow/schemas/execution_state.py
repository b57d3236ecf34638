"""
Execution State Schema - the durable record of one flow run.

The ExecutionState is the single source of truth for where a run is: it is
written at every transition and is enough on its own to resume a waiting or
paused run after a process restart.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, computed_field

from febroflow.errors import ExecutionAlreadyTerminalError, InvalidTransitionError


def utc_now() -> datetime:
    return datetime.now(UTC)


class ExecutionStatus(StrEnum):
    """Status of a flow execution."""

    INITIALIZED = "initialized"  # Created, nothing dispatched yet
    IN_PROGRESS = "in_progress"  # Walking the graph
    WAITING = "waiting"  # A node suspended for external input
    PAUSED = "paused"  # Stopped at a node boundary on request
    COMPLETED = "completed"  # Every path ended normally
    FAILED = "failed"  # A node failed beyond its retry budget
    CANCELLED = "cancelled"  # User/system cancelled

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @property
    def is_resumable(self) -> bool:
        return self in (ExecutionStatus.WAITING, ExecutionStatus.PAUSED)


_TERMINAL = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
)

_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.INITIALIZED: frozenset(
        {ExecutionStatus.IN_PROGRESS, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
    ),
    ExecutionStatus.IN_PROGRESS: frozenset(
        {
            ExecutionStatus.WAITING,
            ExecutionStatus.PAUSED,
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        }
    ),
    ExecutionStatus.WAITING: frozenset(
        {
            ExecutionStatus.IN_PROGRESS,
            ExecutionStatus.PAUSED,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        }
    ),
    ExecutionStatus.PAUSED: frozenset(
        {ExecutionStatus.IN_PROGRESS, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
    ),
}


class PendingReason(StrEnum):
    WAITING = "waiting"  # Node suspended, re-dispatch with the resume input
    PAUSED = "paused"  # Node not entered yet, enter it normally on resume


class ExecutionPathItem(BaseModel):
    """One entry of a run's path: a node entered by one branch."""

    sequence: int  # Global append order across all branches
    node_id: str
    branch_id: str = "0"
    timestamp: datetime = Field(default_factory=utc_now)
    data: dict[str, Any] = Field(default_factory=dict)  # The node's input

    model_config = {"extra": "allow"}


class PendingNode(BaseModel):
    """A parked continuation point."""

    node_id: str
    branch_id: str = "0"
    data: dict[str, Any] = Field(default_factory=dict)
    reason: PendingReason = PendingReason.WAITING

    model_config = {"extra": "allow"}


class BranchOutput(BaseModel):
    """Data of a path that ended at a node with no selected outgoing edge."""

    node_id: str
    branch_id: str = "0"
    data: dict[str, Any] = Field(default_factory=dict)


def branch_sort_key(branch_id: str) -> tuple[int, ...]:
    """Numeric order of dotted branch ids ("0.2" before "0.10")."""
    return tuple(int(part) for part in branch_id.split("."))


class ExecutionState(BaseModel):
    """
    Complete state of one flow execution.

    Lifecycle: created ``initialized``, mutated at every transition, closed
    (terminal status plus ``finished_at``) exactly once. A closed state is a
    read-only historical record; ``transition_to`` refuses to reopen it.
    """

    # Identity
    id: str
    flow_id: str
    context_id: str = ""

    # Status
    status: ExecutionStatus = ExecutionStatus.INITIALIZED
    is_active: bool = True
    current_node_id: str | None = None

    # Timestamps
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: datetime | None = None
    updated_at: datetime = Field(default_factory=utc_now)

    # Data
    input_data: dict[str, Any] = Field(default_factory=dict)
    current_data: dict[str, Any] = Field(default_factory=dict)
    output_data: dict[str, Any] | None = None

    # Progress
    execution_path: list[ExecutionPathItem] = Field(default_factory=list)
    pending: list[PendingNode] = Field(default_factory=list)
    branch_outputs: list[BranchOutput] = Field(default_factory=list)  # Paths already ended
    steps_executed: int = 0

    error: str | None = None

    # is_terminal is dumped as a computed field and dropped again on load
    model_config = {"extra": "ignore"}

    @computed_field
    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def path_node_ids(self) -> list[str]:
        """Node ids of the path, in append order."""
        return [item.node_id for item in sorted(self.execution_path, key=lambda i: i.sequence)]

    def branch_path(self, branch_id: str) -> list[str]:
        """Node ids entered by one branch and the branches it was forked from."""
        prefixes = _branch_lineage(branch_id)
        return [
            item.node_id
            for item in sorted(self.execution_path, key=lambda i: i.sequence)
            if item.branch_id in prefixes
        ]

    def touch(self) -> None:
        self.updated_at = utc_now()

    def ensure_live(self) -> None:
        if self.status.is_terminal:
            raise ExecutionAlreadyTerminalError(self.id, self.status)

    def transition_to(self, target: ExecutionStatus) -> None:
        """
        Move to ``target``, enforcing the lifecycle.

        Raises:
            ExecutionAlreadyTerminalError: the state is already closed
            InvalidTransitionError: ``target`` is not reachable from here
        """
        self.ensure_live()
        if target == self.status:
            return
        if target not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.status, target)

        self.status = target
        now = utc_now()
        self.updated_at = now
        if target.is_terminal:
            self.finished_at = now


def _branch_lineage(branch_id: str) -> set[str]:
    parts = branch_id.split(".")
    return {".".join(parts[: i + 1]) for i in range(len(parts))}
