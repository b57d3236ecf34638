"""
Condition/Branch Resolver - picks the outgoing edges to follow.

Given the label a node produced and the node's outgoing traversal edges:
1. Edges whose effective label equals the produced label
2. Otherwise, edges labelled "default"
3. Otherwise, nothing (the path ends here)

More than one selected edge means fan-out.
"""

import logging
from dataclasses import dataclass, field

from febroflow.graph.flow import DEFAULT_LABEL, ConnectionSpec
from febroflow.graph.model import FlowGraph

logger = logging.getLogger(__name__)


@dataclass
class BranchDecision:
    """Which edges a node's output selects."""

    edges: list[ConnectionSpec] = field(default_factory=list)
    matched_label: str | None = None
    fell_back: bool = False

    @property
    def is_terminal(self) -> bool:
        return not self.edges

    @property
    def is_fan_out(self) -> bool:
        return len(self.edges) > 1


class BranchResolver:
    """Resolves labels against edges using the graph's effective labels."""

    def __init__(self, graph: FlowGraph):
        self.graph = graph

    def resolve(
        self,
        node_id: str,
        output_label: str | None,
        outgoing: list[ConnectionSpec] | None = None,
    ) -> BranchDecision:
        if outgoing is None:
            outgoing = self.graph.get_outgoing_edges(node_id)
        label = output_label or DEFAULT_LABEL

        labelled = [(edge, self.graph.effective_label(edge)) for edge in outgoing]

        matched = [edge for edge, edge_label in labelled if edge_label == label]
        if matched:
            return BranchDecision(edges=matched, matched_label=label)

        defaults = [edge for edge, edge_label in labelled if edge_label == DEFAULT_LABEL]
        if defaults:
            logger.debug(f"Node {node_id}: no edge for label '{label}', following default")
            return BranchDecision(edges=defaults, matched_label=DEFAULT_LABEL, fell_back=True)

        if outgoing:
            logger.debug(f"Node {node_id}: no edge for label '{label}' and no default, path ends")
        return BranchDecision()
