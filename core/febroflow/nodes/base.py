"""
Node handler protocol and registry.

A handler implements one NodeType. It receives the node definition and a
NodeContext, does its work, and returns a NodeResult:

    data=None           -> the node produced no output
    output_label="..."  -> which outgoing edges the branch resolver selects
    suspend=True        -> park this path until continue_flow() resumes it

Handlers classify their own failures by raising NodeExecutionError (or
RetryableNodeError / FatalNodeError); any other exception is treated as
transient and retried within the node's budget.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from febroflow.errors import UnknownNodeTypeError
from febroflow.graph.flow import DEFAULT_LABEL, NodeSpec, NodeType


@dataclass
class NodeResult:
    """What a handler hands back to the engine."""

    data: dict[str, Any] | None
    output_label: str = DEFAULT_LABEL
    suspend: bool = False


@dataclass
class NodeContext:
    """Per-call context for a node handler."""

    node: NodeSpec
    input_data: dict[str, Any]
    params: dict[str, Any]
    execution_id: str
    flow_id: str
    context_id: str = ""
    branch_id: str = "0"

    # Ambient services
    credentials: dict[str, Any] = field(default_factory=dict)
    http_client: httpx.AsyncClient | None = None

    # Sub-nodes bound through ai_* connections, keyed by connection type
    attachments: dict[str, list[NodeSpec]] = field(default_factory=dict)

    # Set when a suspended node is re-dispatched by continue_flow()
    resume_input: dict[str, Any] | None = None

    attempt: int = 1

    @property
    def is_resume(self) -> bool:
        return self.resume_input is not None

    def attached(self, connection_type: str) -> NodeSpec | None:
        """First sub-node attached with ``connection_type``, if any."""
        nodes = self.attachments.get(connection_type) or []
        return nodes[0] if nodes else None


class NodeHandler(ABC):
    """Executes one node type."""

    @abstractmethod
    async def execute(self, node: NodeSpec, ctx: NodeContext) -> NodeResult: ...


class NodeHandlerRegistry:
    """
    Maps each NodeType to exactly one handler.

    Built once at startup; the engine never guesses a handler at runtime.
    """

    def __init__(self):
        self._handlers: dict[NodeType, NodeHandler] = {}

    def register(self, node_type: NodeType | str, handler: NodeHandler) -> None:
        self._handlers[NodeType(node_type)] = handler

    def unregister(self, node_type: NodeType | str) -> bool:
        return self._handlers.pop(NodeType(node_type), None) is not None

    def resolve(self, node_type: NodeType | str) -> NodeHandler:
        """
        Raises:
            UnknownNodeTypeError: no handler bound to the type
        """
        try:
            key = NodeType(node_type)
        except ValueError:
            raise UnknownNodeTypeError(node_type) from None
        handler = self._handlers.get(key)
        if handler is None:
            raise UnknownNodeTypeError(key)
        return handler

    def is_registered(self, node_type: NodeType | str) -> bool:
        try:
            return NodeType(node_type) in self._handlers
        except ValueError:
            return False

    def registered_types(self) -> list[NodeType]:
        return sorted(self._handlers, key=lambda t: t.value)
