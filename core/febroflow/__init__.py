"""
FebroFlow - flow execution engine.

Users compose directed graphs of typed nodes (triggers, AI calls,
conditionals, vector-store lookups, external calls) into flows; the engine
walks a flow against an input event, persists progress at every step, and
supports inspection, cancellation, pause and resume.
"""

from febroflow.config import EngineConfig
from febroflow.graph import FlowDefinition, FlowEngine, FlowGraph
from febroflow.nodes import NodeContext, NodeHandler, NodeResult, build_default_registry
from febroflow.runtime import EventBus, EventType
from febroflow.schemas.execution_state import ExecutionState, ExecutionStatus
from febroflow.storage import (
    FileExecutionStore,
    FileFlowRepository,
    InMemoryExecutionStore,
    InMemoryFlowRepository,
)

__version__ = "0.1.0"

__all__ = [
    "EngineConfig",
    "EventBus",
    "EventType",
    "ExecutionState",
    "ExecutionStatus",
    "FileExecutionStore",
    "FileFlowRepository",
    "FlowDefinition",
    "FlowEngine",
    "FlowGraph",
    "InMemoryExecutionStore",
    "InMemoryFlowRepository",
    "NodeContext",
    "NodeHandler",
    "NodeResult",
    "build_default_registry",
]
