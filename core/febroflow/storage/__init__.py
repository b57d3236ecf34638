"""Storage for flow definitions and execution states."""

from febroflow.storage.base import ExecutionStateRepository, FlowRepository
from febroflow.storage.file_store import FileExecutionStore, FileFlowRepository
from febroflow.storage.memory import InMemoryExecutionStore, InMemoryFlowRepository

__all__ = [
    "ExecutionStateRepository",
    "FileExecutionStore",
    "FileFlowRepository",
    "FlowRepository",
    "InMemoryExecutionStore",
    "InMemoryFlowRepository",
]
