"""
Graph Model - the in-memory node graph of one flow.

Built once per execution from the flow repository. Answers structural
questions (outgoing edges, entry candidates, attachments, cycles); it never
decides policy. Entry-node fallback is the executor's job.
"""

import logging
from dataclasses import dataclass, field

from febroflow.errors import FlowValidationError, GraphLoadError
from febroflow.graph.flow import (
    DEFAULT_LABEL,
    TRIGGER_TYPES,
    ConnectionSpec,
    FlowDefinition,
    FlowSpec,
    NodeSpec,
)
from febroflow.graph.node_types import get_node_type_info
from febroflow.storage.base import FlowRepository

logger = logging.getLogger(__name__)


@dataclass
class FlowGraph:
    """Nodes and connections of one flow, indexed for traversal."""

    flow: FlowSpec
    nodes: list[NodeSpec]
    connections: list[ConnectionSpec]

    _nodes_by_id: dict[str, NodeSpec] = field(default_factory=dict, init=False, repr=False)
    _outgoing: dict[str, list[ConnectionSpec]] = field(default_factory=dict, init=False, repr=False)
    _incoming: dict[str, list[ConnectionSpec]] = field(default_factory=dict, init=False, repr=False)
    _attachments: dict[str, list[ConnectionSpec]] = field(
        default_factory=dict, init=False, repr=False
    )

    def __post_init__(self) -> None:
        self._nodes_by_id = {node.id: node for node in self.nodes}
        for connection in self.connections:
            if connection.is_traversal:
                self._outgoing.setdefault(connection.source_node_id, []).append(connection)
                self._incoming.setdefault(connection.target_node_id, []).append(connection)
            else:
                self._attachments.setdefault(connection.target_node_id, []).append(connection)

    # === LOADING ===

    @classmethod
    async def load(cls, repository: FlowRepository, flow_id: str) -> "FlowGraph":
        """
        Load and structurally check the graph of a flow.

        Raises:
            GraphLoadError: the flow does not resolve or has no nodes
            FlowValidationError: a connection breaks the connection invariants
        """
        flow = await repository.get_flow(flow_id)
        if flow is None:
            raise GraphLoadError(flow_id, "flow does not exist")

        nodes = await repository.get_nodes_by_flow(flow_id)
        if not nodes:
            raise GraphLoadError(flow_id, "flow has no nodes")

        connections = await repository.get_connections_by_flow(flow_id)
        graph = cls(flow=flow, nodes=nodes, connections=connections)

        errors = graph.structural_errors()
        if errors:
            raise FlowValidationError(flow_id, errors)

        logger.debug(
            f"Loaded graph for flow {flow_id}: {len(nodes)} nodes, {len(connections)} connections"
        )
        return graph

    @classmethod
    def from_definition(cls, definition: FlowDefinition) -> "FlowGraph":
        return cls(
            flow=definition.flow,
            nodes=list(definition.nodes),
            connections=list(definition.connections),
        )

    def structural_errors(self) -> list[str]:
        """Violations of the node/connection invariants."""
        errors = []
        flow_id = self.flow.id

        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                errors.append(f"Duplicate node id '{node.id}'")
            seen.add(node.id)
            if node.flow_id and node.flow_id != flow_id:
                errors.append(f"Node '{node.id}' belongs to flow '{node.flow_id}'")

        for connection in self.connections:
            if connection.flow_id and connection.flow_id != flow_id:
                errors.append(f"Connection '{connection.id}' belongs to flow '{connection.flow_id}'")
            if connection.source_node_id not in self._nodes_by_id:
                errors.append(
                    f"Connection '{connection.id}' references missing source "
                    f"'{connection.source_node_id}'"
                )
            if connection.target_node_id not in self._nodes_by_id:
                errors.append(
                    f"Connection '{connection.id}' references missing target "
                    f"'{connection.target_node_id}'"
                )
            if connection.source_node_id == connection.target_node_id:
                errors.append(
                    f"Connection '{connection.id}' targets its own source "
                    f"'{connection.source_node_id}'"
                )

        return errors

    # === LOOKUPS ===

    def get_node(self, node_id: str) -> NodeSpec | None:
        return self._nodes_by_id.get(node_id)

    def get_outgoing_edges(self, node_id: str) -> list[ConnectionSpec]:
        """Traversal edges leaving a node, in definition order."""
        return list(self._outgoing.get(node_id, []))

    def get_incoming_edges(self, node_id: str) -> list[ConnectionSpec]:
        return list(self._incoming.get(node_id, []))

    def get_attachments(self, node_id: str) -> dict[str, list[NodeSpec]]:
        """Sub-nodes attached to a node, grouped by connection type."""
        attached: dict[str, list[NodeSpec]] = {}
        for connection in self._attachments.get(node_id, []):
            source = self._nodes_by_id.get(connection.source_node_id)
            if source is not None:
                attached.setdefault(connection.type.value, []).append(source)
        return attached

    def effective_label(self, connection: ConnectionSpec) -> str:
        """
        The branch label an edge answers to.

        Explicit label first; otherwise the output port name for branching
        source types; otherwise "default".
        """
        if connection.label:
            return connection.label

        source = self._nodes_by_id.get(connection.source_node_id)
        if source is not None and connection.source_output_index is not None:
            ports = get_node_type_info(source.type).output_ports
            if len(ports) > 1 and 0 <= connection.source_output_index < len(ports):
                return ports[connection.source_output_index].name

        return DEFAULT_LABEL

    # === STRUCTURE ===

    def attachment_node_ids(self) -> set[str]:
        """Nodes that only serve as attached sub-nodes."""
        sources = {
            c.source_node_id for c in self.connections if not c.is_traversal
        }
        walked = {c.source_node_id for c in self.connections if c.is_traversal} | {
            c.target_node_id for c in self.connections if c.is_traversal
        }
        return sources - walked

    def entry_candidates(self) -> list[NodeSpec]:
        """Nodes with no incoming traversal edge, in definition order."""
        sub_nodes = self.attachment_node_ids()
        return [
            node
            for node in self.nodes
            if not self._incoming.get(node.id) and node.id not in sub_nodes
        ]

    def trigger_nodes(self, candidates: list[NodeSpec] | None = None) -> list[NodeSpec]:
        nodes = self.nodes if candidates is None else candidates
        return [node for node in nodes if node.type in TRIGGER_TYPES]

    def reachable_from(self, node_ids: list[str]) -> set[str]:
        reachable: set[str] = set()
        to_visit = list(node_ids)
        while to_visit:
            current = to_visit.pop()
            if current in reachable:
                continue
            reachable.add(current)
            for edge in self._outgoing.get(current, []):
                to_visit.append(edge.target_node_id)
        return reachable

    def find_cycles(self) -> list[list[str]]:
        """
        Return one node-id cycle per back edge found by depth-first search.

        Cycles are legal; callers use this for warnings.
        """
        cycles: list[list[str]] = []
        visited: set[str] = set()
        stack: list[str] = []
        on_stack: set[str] = set()

        def visit(node_id: str) -> None:
            visited.add(node_id)
            stack.append(node_id)
            on_stack.add(node_id)
            for edge in self._outgoing.get(node_id, []):
                target = edge.target_node_id
                if target in on_stack:
                    cycles.append(stack[stack.index(target) :] + [target])
                elif target not in visited and target in self._nodes_by_id:
                    visit(target)
            stack.pop()
            on_stack.discard(node_id)

        for node in self.nodes:
            if node.id not in visited:
                visit(node.id)
        return cycles
