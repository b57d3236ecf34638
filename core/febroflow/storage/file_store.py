"""
File Store - execution states as JSON documents on disk.

Layout:
  {base_path}/
    executions/
      {execution_id}.json      # One ExecutionState per file

Flow definitions are read from a separate directory of FlowDefinition
documents (one ``*.json`` per flow).
"""

import asyncio
import logging
import threading
from pathlib import Path

from febroflow.errors import ExecutionConflictError, ExecutionNotFoundError
from febroflow.graph.flow import ConnectionSpec, FlowDefinition, FlowSpec, NodeSpec
from febroflow.schemas.execution_state import ExecutionState
from febroflow.storage.base import ExecutionStateRepository, FlowRepository, StateMutator
from febroflow.utils.io import atomic_write, validate_key

logger = logging.getLogger(__name__)


class FileExecutionStore(ExecutionStateRepository):
    """
    Durable execution store backed by one JSON file per execution.

    Mutations run whole inside one worker thread under a threading.Lock, so
    within one process the read-modify-write of ``update`` and the
    deactivate-then-insert of ``create`` are atomic, and a cancelled caller
    cannot release the lock before its write has landed. Writes use temp
    file + rename for crash safety.
    """

    def __init__(self, base_path: str | Path):
        """
        Initialize the store.

        Args:
            base_path: Base path for storage (e.g., ~/.febroflow/storage)
        """
        self.base_path = Path(base_path)
        self.executions_dir = self.base_path / "executions"
        self._lock = threading.Lock()

    def get_state_path(self, execution_id: str) -> Path:
        validate_key(execution_id)
        return self.executions_dir / f"{execution_id}.json"

    def _read(self, execution_id: str) -> ExecutionState | None:
        path = self.get_state_path(execution_id)
        if not path.exists():
            return None
        return ExecutionState.model_validate_json(path.read_text(encoding="utf-8"))

    def _write(self, state: ExecutionState) -> None:
        path = self.get_state_path(state.id)
        path.parent.mkdir(parents=True, exist_ok=True)
        with atomic_write(path) as f:
            f.write(state.model_dump_json(indent=2))

    def _scan(self) -> list[ExecutionState]:
        states = []
        if not self.executions_dir.exists():
            return states

        for path in self.executions_dir.glob("*.json"):
            try:
                states.append(ExecutionState.model_validate_json(path.read_text(encoding="utf-8")))
            except Exception as e:
                logger.warning(f"Failed to load {path}: {e}")
        return states

    async def create(self, state: ExecutionState) -> ExecutionState:
        return await asyncio.to_thread(self._create, state)

    async def update(self, execution_id: str, mutator: StateMutator) -> ExecutionState:
        return await asyncio.to_thread(self._update, execution_id, mutator)

    def _create(self, state: ExecutionState) -> ExecutionState:
        with self._lock:
            if self.get_state_path(state.id).exists():
                raise ExecutionConflictError(state.id)

            for other in self._scan():
                if (
                    other.is_active
                    and other.flow_id == state.flow_id
                    and other.context_id == state.context_id
                ):
                    other.is_active = False
                    other.touch()
                    self._write(other)
                    logger.debug(f"Deactivated execution {other.id} for context {other.context_id}")

            stored = state.model_copy(deep=True)
            stored.is_active = True
            self._write(stored)
            return stored

    def _update(self, execution_id: str, mutator: StateMutator) -> ExecutionState:
        with self._lock:
            current = self._read(execution_id)
            if current is None:
                raise ExecutionNotFoundError(execution_id)

            mutator(current)
            current.touch()
            self._write(current)
            return current

    async def get_by_id(self, execution_id: str) -> ExecutionState | None:
        return await asyncio.to_thread(self._read, execution_id)

    async def get_active(self, flow_id: str, context_id: str) -> ExecutionState | None:
        def _find() -> ExecutionState | None:
            for state in self._scan():
                if state.is_active and state.flow_id == flow_id and state.context_id == context_id:
                    return state
            return None

        return await asyncio.to_thread(_find)

    async def list_history(self, flow_id: str, limit: int | None = None) -> list[ExecutionState]:
        def _history() -> list[ExecutionState]:
            states = [s for s in self._scan() if s.flow_id == flow_id]
            # Most recently started first
            states.sort(key=lambda s: s.started_at, reverse=True)
            return states[:limit] if limit is not None else states

        return await asyncio.to_thread(_history)


class FileFlowRepository(FlowRepository):
    """
    Flow definitions read from a directory of FlowDefinition JSON files.

    Files are re-read on every lookup so edits on disk are picked up by the
    next execution.
    """

    def __init__(self, flows_dir: str | Path):
        self.flows_dir = Path(flows_dir)

    def _load_all(self) -> dict[str, FlowDefinition]:
        definitions: dict[str, FlowDefinition] = {}
        if not self.flows_dir.exists():
            return definitions

        for path in sorted(self.flows_dir.glob("*.json")):
            try:
                definition = FlowDefinition.from_file(path)
            except Exception as e:
                logger.warning(f"Skipping invalid flow file {path}: {e}")
                continue
            definitions[definition.flow.id] = definition
        return definitions

    async def _get_definition(self, flow_id: str) -> FlowDefinition | None:
        definitions = await asyncio.to_thread(self._load_all)
        return definitions.get(flow_id)

    async def get_flow(self, flow_id: str) -> FlowSpec | None:
        definition = await self._get_definition(flow_id)
        return definition.flow if definition else None

    async def get_nodes_by_flow(self, flow_id: str) -> list[NodeSpec]:
        definition = await self._get_definition(flow_id)
        return definition.nodes if definition else []

    async def get_connections_by_flow(self, flow_id: str) -> list[ConnectionSpec]:
        definition = await self._get_definition(flow_id)
        return definition.connections if definition else []
