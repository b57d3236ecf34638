"""
Error taxonomy for the flow execution engine.

Three families matter to callers:

- Definition errors: the flow cannot run at all (missing, inactive, malformed).
  Raised before any ExecutionState is created.
- Dispatch errors: a node could not be executed. The run ends in FAILED and
  the error is re-raised to whoever drove the run.
- State errors: the caller asked for something the execution's current
  status does not allow ("already done" vs. "system error").

Node handlers raise NodeExecutionError (or one of its two shorthands) to tell
the engine whether a failure is worth retrying.
"""

from typing import Any


class FlowEngineError(Exception):
    """Base class for every error raised by febroflow."""


# === DEFINITION ERRORS ===


class DefinitionError(FlowEngineError):
    """The flow definition prevents execution."""


class FlowNotFoundError(DefinitionError):
    def __init__(self, flow_id: str):
        self.flow_id = flow_id
        super().__init__(f"Flow '{flow_id}' not found")


class FlowInactiveError(DefinitionError):
    def __init__(self, flow_id: str):
        self.flow_id = flow_id
        super().__init__(f"Flow '{flow_id}' is not active")


class GraphLoadError(DefinitionError):
    """The node graph of a flow could not be loaded."""

    def __init__(self, flow_id: str, reason: str):
        self.flow_id = flow_id
        self.reason = reason
        super().__init__(f"Cannot load graph for flow '{flow_id}': {reason}")


class FlowValidationError(DefinitionError):
    """The graph is structurally invalid."""

    def __init__(self, flow_id: str, errors: list[str]):
        self.flow_id = flow_id
        self.errors = list(errors)
        super().__init__(f"Invalid flow '{flow_id}': {'; '.join(self.errors)}")


class AmbiguousEntryError(FlowValidationError):
    """Zero or several entry nodes while strict entry resolution is on."""

    def __init__(self, flow_id: str, candidates: list[str]):
        self.candidates = list(candidates)
        if candidates:
            detail = f"multiple entry nodes {self.candidates}"
        else:
            detail = "no node without incoming edges"
        super().__init__(flow_id, [detail])


# === DISPATCH ERRORS ===


class DispatchError(FlowEngineError):
    """A node could not be executed; fatal for the run."""


class UnknownNodeTypeError(DispatchError):
    def __init__(self, node_type: Any, node_id: str | None = None):
        self.node_type = node_type
        self.node_id = node_id
        where = f" (node '{node_id}')" if node_id else ""
        super().__init__(f"No handler registered for node type '{node_type}'{where}")


class NodeDispatchError(DispatchError):
    """A node kept failing until its retry budget ran out."""

    def __init__(self, node_id: str, attempts: int, cause: BaseException):
        self.node_id = node_id
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"Node '{node_id}' failed after {attempts} attempt(s): {cause}")


class StepLimitExceededError(DispatchError):
    def __init__(self, max_steps: int):
        self.max_steps = max_steps
        super().__init__(f"Execution exceeded the limit of {max_steps} node dispatches")


# === NODE HANDLER ERRORS ===


class NodeExecutionError(FlowEngineError):
    """
    Raised by a node handler.

    ``retryable`` is the handler's judgement; the engine only enforces how
    many times it acts on it.
    """

    def __init__(self, message: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)


class RetryableNodeError(NodeExecutionError):
    def __init__(self, message: str):
        super().__init__(message, retryable=True)


class FatalNodeError(NodeExecutionError):
    def __init__(self, message: str):
        super().__init__(message, retryable=False)


# === STATE ERRORS ===


class ExecutionStateError(FlowEngineError):
    """The requested operation conflicts with the execution's state."""


class ExecutionNotFoundError(ExecutionStateError):
    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution '{execution_id}' not found")


class ExecutionAlreadyTerminalError(ExecutionStateError):
    def __init__(self, execution_id: str, status: Any):
        self.execution_id = execution_id
        self.status = status
        super().__init__(f"Execution '{execution_id}' is already {status}")


class InvalidExecutionStateError(ExecutionStateError):
    def __init__(self, execution_id: str, status: Any, expected: list[Any]):
        self.execution_id = execution_id
        self.status = status
        self.expected = list(expected)
        wanted = " or ".join(str(s) for s in self.expected)
        super().__init__(f"Execution '{execution_id}' is {status}, expected {wanted}")


class InvalidTransitionError(ExecutionStateError):
    def __init__(self, source: Any, target: Any):
        self.source = source
        self.target = target
        super().__init__(f"Illegal status transition {source} -> {target}")


class ExecutionConflictError(ExecutionStateError):
    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution '{execution_id}' already exists")
