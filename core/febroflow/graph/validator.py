"""
Flow validation at definition/activation time.

``validate_flow`` reports hard errors (the flow cannot run) separately from
warnings (the flow runs but probably not as intended). ``validate_for_activation``
is stricter: a flow about to be activated must have exactly one entry node.
"""

import logging
from dataclasses import dataclass, field

from febroflow.graph.flow import FlowDefinition
from febroflow.graph.model import FlowGraph

logger = logging.getLogger(__name__)


@dataclass
class ValidationReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def validate_flow(definition: FlowDefinition) -> ValidationReport:
    """Check a flow definition without loading it into the engine."""
    report = ValidationReport()

    if not definition.nodes:
        report.errors.append("Flow has no nodes")
        return report

    graph = FlowGraph.from_definition(definition)
    report.errors.extend(graph.structural_errors())

    candidates = graph.entry_candidates()
    if not candidates:
        report.warnings.append(
            "No node without incoming edges; execution will start at the first node"
        )
    elif len(candidates) > 1:
        ids = [n.id for n in candidates]
        report.warnings.append(f"Multiple entry candidates {ids}; execution picks one")

    for cycle in graph.find_cycles():
        report.warnings.append(f"Cycle detected: {' -> '.join(cycle)}")

    start = [n.id for n in candidates] or [definition.nodes[0].id]
    reachable = graph.reachable_from(start)
    sub_nodes = graph.attachment_node_ids()
    for node in definition.nodes:
        if node.id not in reachable and node.id not in sub_nodes:
            report.warnings.append(f"Node '{node.id}' is unreachable from the entry node")

    return report


def validate_for_activation(definition: FlowDefinition) -> ValidationReport:
    """Validation plus the single-entry rule an active flow must satisfy."""
    report = validate_flow(definition)
    if not definition.nodes:
        return report

    candidates = FlowGraph.from_definition(definition).entry_candidates()
    if len(candidates) != 1:
        ids = [n.id for n in candidates]
        report.errors.append(f"Flow must have exactly one entry node, found {len(ids)}: {ids}")
    return report
