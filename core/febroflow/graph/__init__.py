"""Graph structures: flow definitions, the node graph, branching and execution."""

from febroflow.graph.branch import BranchDecision, BranchResolver
from febroflow.graph.executor import ExecutionPathLog, FlowEngine
from febroflow.graph.flow import (
    ConnectionSpec,
    ConnectionType,
    FlowDefinition,
    FlowSpec,
    NodeSpec,
    NodeType,
)
from febroflow.graph.model import FlowGraph
from febroflow.graph.node_types import NodeTypeInfo, get_node_type_info, list_node_types
from febroflow.graph.validator import ValidationReport, validate_flow, validate_for_activation

__all__ = [
    # Definitions
    "FlowSpec",
    "NodeSpec",
    "NodeType",
    "ConnectionSpec",
    "ConnectionType",
    "FlowDefinition",
    # Catalog
    "NodeTypeInfo",
    "get_node_type_info",
    "list_node_types",
    # Graph
    "FlowGraph",
    "BranchDecision",
    "BranchResolver",
    # Validation
    "ValidationReport",
    "validate_flow",
    "validate_for_activation",
    # Execution
    "FlowEngine",
    "ExecutionPathLog",
]
