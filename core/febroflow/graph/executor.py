"""
Flow Executor - runs flows.

The engine:
1. Loads the flow and its node graph and resolves the entry node
2. Creates the ExecutionState (deactivating the previous run of the context)
3. Walks the graph from the entry node, dispatching each node with retries
4. Persists progress at every step so a run survives restarts
5. Settles the run as completed, waiting, paused, cancelled or failed

Fan-out runs every selected branch concurrently in one TaskGroup; the run
settles once all of them end. The first fatal error cancels the siblings and
fails the run.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx

from febroflow.config import EngineConfig
from febroflow.errors import (
    AmbiguousEntryError,
    ExecutionAlreadyTerminalError,
    ExecutionNotFoundError,
    FlowInactiveError,
    FlowNotFoundError,
    GraphLoadError,
    InvalidExecutionStateError,
    NodeDispatchError,
    NodeExecutionError,
    StepLimitExceededError,
    UnknownNodeTypeError,
)
from febroflow.graph.branch import BranchResolver
from febroflow.graph.flow import NodeSpec
from febroflow.graph.model import FlowGraph
from febroflow.nodes.base import NodeContext, NodeHandlerRegistry, NodeResult
from febroflow.nodes.dispatcher import NodeDispatcher
from febroflow.nodes.templating import render
from febroflow.observability import set_trace_context
from febroflow.runtime.event_bus import EventBus
from febroflow.schemas.execution_state import (
    BranchOutput,
    ExecutionPathItem,
    ExecutionState,
    ExecutionStatus,
    PendingNode,
    PendingReason,
    branch_sort_key,
)
from febroflow.services.credentials import CredentialResolver
from febroflow.storage.base import ExecutionStateRepository, FlowRepository

logger = logging.getLogger(__name__)

ROOT_BRANCH = "0"


class ExecutionPathLog:
    """
    Append-only path history shared by all branches of one run.

    Items live in one arena ordered by ``sequence``; each branch keeps an
    index of its own items. Appends are serialized by one lock and persisted
    while it is held, so persisted order equals log order. A resumed run is
    seeded with the items already persisted.
    """

    def __init__(self, existing: list[ExecutionPathItem] | None = None):
        self._items: list[ExecutionPathItem] = []
        self._by_branch: dict[str, list[int]] = {}
        for item in sorted(existing or [], key=lambda i: i.sequence):
            self._index(item)
        self._next_sequence = self._items[-1].sequence + 1 if self._items else 0
        self._lock = asyncio.Lock()

    def _index(self, item: ExecutionPathItem) -> None:
        self._by_branch.setdefault(item.branch_id, []).append(len(self._items))
        self._items.append(item)

    async def append(
        self,
        node_id: str,
        branch_id: str,
        data: dict[str, Any],
        persist: Callable[[ExecutionPathItem], Awaitable[None]],
    ) -> ExecutionPathItem:
        async with self._lock:
            item = ExecutionPathItem(
                sequence=self._next_sequence,
                node_id=node_id,
                branch_id=branch_id,
                data=dict(data),
            )
            await persist(item)
            self._index(item)
            self._next_sequence += 1
            return item

    def branch_items(self, branch_id: str) -> list[ExecutionPathItem]:
        """Items entered by exactly this branch, in append order."""
        return [self._items[i] for i in self._by_branch.get(branch_id, [])]


@dataclass
class _Continuation:
    """Where a path starts or resumes walking."""

    node_id: str
    branch_id: str
    data: dict[str, Any]
    resume_input: dict[str, Any] | None = None  # Re-dispatch of a waiting node


@dataclass
class _RunContext:
    """Per-run bookkeeping. Never shared between executions."""

    execution_id: str
    flow_id: str
    context_id: str
    graph: FlowGraph
    resolver: BranchResolver
    path_log: ExecutionPathLog
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    pause_event: asyncio.Event = field(default_factory=asyncio.Event)
    pending: list[PendingNode] = field(default_factory=list)
    terminal_outputs: list[BranchOutput] = field(default_factory=list)
    http_client: httpx.AsyncClient | None = None
    steps: int = 0

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class _RunStopped(Exception):
    """A path noticed cancellation and stops quietly."""


class FlowEngine:
    """
    Executes flows and manages their execution state.

    Example:
        engine = FlowEngine(
            flow_repository=InMemoryFlowRepository([definition]),
            execution_store=InMemoryExecutionStore(),
            registry=build_default_registry(),
        )

        execution_id = await engine.execute_flow("greeter", "chat-42", {"text": "hi"})
        state = await engine.get_execution_state(execution_id)
    """

    def __init__(
        self,
        flow_repository: FlowRepository,
        execution_store: ExecutionStateRepository,
        registry: NodeHandlerRegistry,
        config: EngineConfig | None = None,
        event_bus: EventBus | None = None,
        credential_resolver: CredentialResolver | None = None,
        http_client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ):
        self.flows = flow_repository
        self.store = execution_store
        self.registry = registry
        self.dispatcher = NodeDispatcher(registry)
        self.config = config or EngineConfig()
        self.event_bus = event_bus
        self.credentials = credential_resolver
        self._http_client_factory = http_client_factory or (
            lambda: httpx.AsyncClient(timeout=self.config.http_timeout)
        )

        self._runs: dict[str, _RunContext] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._completion_events: dict[str, asyncio.Event] = {}
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_executions)

    # === STARTING RUNS ===

    async def execute_flow(
        self,
        flow_id: str,
        context_id: str = "",
        input_data: dict[str, Any] | None = None,
    ) -> str:
        """
        Run a flow until it completes, waits or pauses.

        Returns:
            The execution id

        Raises:
            DefinitionError: the flow cannot run (no ExecutionState is created)
            DispatchError: a node failed; the run is recorded as failed
        """
        run, entry = await self._prepare(flow_id, context_id, input_data or {})
        try:
            await self._execute_run(run, entry, input_data or {})
        except Exception as e:
            e.add_note(f"execution_id={run.execution_id}")
            raise
        return run.execution_id

    async def start_flow(
        self,
        flow_id: str,
        context_id: str = "",
        input_data: dict[str, Any] | None = None,
    ) -> str:
        """
        Validate and create the execution, then run it in the background.

        Returns as soon as the ExecutionState exists. Use
        ``wait_for_completion`` or the event bus to follow the run.
        """
        run, entry = await self._prepare(flow_id, context_id, input_data or {})
        completion = asyncio.Event()
        self._completion_events[run.execution_id] = completion

        task = asyncio.create_task(self._run_in_background(run, entry, input_data or {}))
        self._tasks[run.execution_id] = task

        logger.debug(f"Queued execution {run.execution_id} for flow {flow_id}")
        return run.execution_id

    async def _run_in_background(
        self,
        run: _RunContext,
        entry: NodeSpec,
        input_data: dict[str, Any],
    ) -> None:
        try:
            async with self._semaphore:
                await self._execute_run(run, entry, input_data)
        except Exception as e:
            # Already recorded as failed in the store and on the event bus
            logger.error(f"Execution {run.execution_id} failed: {e}")
        finally:
            event = self._completion_events.pop(run.execution_id, None)
            if event is not None:
                event.set()
            self._tasks.pop(run.execution_id, None)

    async def wait_for_completion(
        self,
        execution_id: str,
        timeout: float | None = None,
    ) -> ExecutionState:
        """
        Wait for a background run to settle.

        Returns the stored state once the run is no longer walking, or the
        latest state when ``timeout`` expires first.
        """
        event = self._completion_events.get(execution_id)
        if event is not None:
            try:
                if timeout:
                    await asyncio.wait_for(event.wait(), timeout=timeout)
                else:
                    await event.wait()
            except TimeoutError:
                logger.debug(f"Timed out waiting for execution {execution_id}")
        return await self.get_execution_state(execution_id)

    async def _prepare(
        self,
        flow_id: str,
        context_id: str,
        input_data: dict[str, Any],
    ) -> tuple[_RunContext, NodeSpec]:
        """Validate the flow and create its ExecutionState."""
        flow = await self.flows.get_flow(flow_id)
        if flow is None:
            raise FlowNotFoundError(flow_id)
        if not flow.is_active:
            raise FlowInactiveError(flow_id)

        graph = await FlowGraph.load(self.flows, flow_id)
        entry = self._resolve_entry(graph)

        state = ExecutionState(
            id=self._new_execution_id(),
            flow_id=flow_id,
            context_id=context_id,
            input_data=dict(input_data),
            current_data=dict(input_data),
        )
        state = await self.store.create(state)
        logger.info(f"Created execution {state.id} for flow {flow_id} (context '{context_id}')")

        run = self._new_run(state, graph)
        return run, entry

    def _resolve_entry(self, graph: FlowGraph) -> NodeSpec:
        flow_id = graph.flow.id
        candidates = graph.entry_candidates()
        if len(candidates) == 1:
            return candidates[0]

        if self.config.strict_entry_resolution:
            raise AmbiguousEntryError(flow_id, [n.id for n in candidates])

        if not candidates:
            logger.warning(
                f"Flow {flow_id} has no node without incoming edges; "
                f"starting at first node '{graph.nodes[0].id}'"
            )
            return graph.nodes[0]

        triggers = graph.trigger_nodes(candidates)
        chosen = triggers[0] if len(triggers) == 1 else candidates[0]
        logger.warning(
            f"Flow {flow_id} has {len(candidates)} entry candidates "
            f"{[n.id for n in candidates]}; starting at '{chosen.id}'"
        )
        return chosen

    def _new_execution_id(self) -> str:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return f"exec_{timestamp}_{uuid.uuid4().hex[:8]}"

    def _new_run(self, state: ExecutionState, graph: FlowGraph) -> _RunContext:
        run = _RunContext(
            execution_id=state.id,
            flow_id=state.flow_id,
            context_id=state.context_id,
            graph=graph,
            resolver=BranchResolver(graph),
            path_log=ExecutionPathLog(state.execution_path),
            terminal_outputs=[o.model_copy(deep=True) for o in state.branch_outputs],
        )
        self._runs[state.id] = run
        return run

    # === RUNNING ===

    async def _execute_run(
        self,
        run: _RunContext,
        entry: NodeSpec,
        input_data: dict[str, Any],
    ) -> ExecutionState:
        set_trace_context(
            execution_id=run.execution_id, flow_id=run.flow_id, context_id=run.context_id
        )

        def begin(state: ExecutionState) -> None:
            state.transition_to(ExecutionStatus.IN_PROGRESS)
            state.current_node_id = entry.id

        try:
            await self.store.update(run.execution_id, begin)
        except ExecutionAlreadyTerminalError:
            # Cancelled before it got a slot
            self._runs.pop(run.execution_id, None)
            return await self.get_execution_state(run.execution_id)

        if self.event_bus:
            await self.event_bus.emit_execution_started(
                run.flow_id, run.execution_id, run.context_id, input_data
            )
        logger.info(f"🚀 Executing flow {run.flow_id} from '{entry.id}'")

        return await self._drive(run, [_Continuation(entry.id, ROOT_BRANCH, dict(input_data))])

    async def _drive(self, run: _RunContext, continuations: list[_Continuation]) -> ExecutionState:
        """Walk all continuations, then settle the run."""
        try:
            async with self._http_client_factory() as client:
                run.http_client = client
                await self._walk_concurrently(run, continuations)
            return await self._settle(run)
        except Exception as e:
            await self._fail(run, e)
            raise
        finally:
            run.http_client = None
            self._runs.pop(run.execution_id, None)

    async def _walk_concurrently(self, run: _RunContext, continuations: list[_Continuation]) -> None:
        if len(continuations) == 1:
            await self._walk(run, continuations[0])
            return

        try:
            async with asyncio.TaskGroup() as tg:
                for continuation in continuations:
                    tg.create_task(self._walk(run, continuation))
        except ExceptionGroup as eg:
            # Fail fast: siblings are already cancelled, surface the first error
            raise eg.exceptions[0] from None

    async def _walk(self, run: _RunContext, continuation: _Continuation) -> None:
        """Walk one path until it ends, parks, forks or is stopped."""
        node_id = continuation.node_id
        branch_id = continuation.branch_id
        data = continuation.data
        resume_input = continuation.resume_input

        try:
            while True:
                if run.cancelled:
                    return

                if run.pause_event.is_set() and resume_input is None:
                    logger.info(f"⏸ Pause requested; parking '{node_id}' (branch {branch_id})")
                    run.pending.append(
                        PendingNode(
                            node_id=node_id,
                            branch_id=branch_id,
                            data=data,
                            reason=PendingReason.PAUSED,
                        )
                    )
                    return

                node = run.graph.get_node(node_id)
                if node is None:
                    raise GraphLoadError(run.flow_id, f"node '{node_id}' does not exist")

                if resume_input is None:
                    await self._record_entry(run, node, branch_id, data)
                else:
                    await self._persist(run, node, data, count_step=False)

                result = await self._dispatch_with_retries(run, node, branch_id, data, resume_input)
                resume_input = None

                if run.cancelled:
                    logger.info(f"Discarding result of '{node.id}'; execution was cancelled")
                    return

                if result.suspend:
                    logger.info(f"⏸ '{node.id}' is waiting for input (branch {branch_id})")
                    run.pending.append(
                        PendingNode(
                            node_id=node.id,
                            branch_id=branch_id,
                            data=result.data if result.data is not None else data,
                            reason=PendingReason.WAITING,
                        )
                    )
                    return

                output = result.data
                if output is None:
                    if not node.always_output_data:
                        logger.info(f"'{node.id}' produced no output; path ends")
                        return
                    output = {}

                await self._persist(run, node, output, count_step=True)

                decision = run.resolver.resolve(node.id, result.output_label)
                if decision.is_terminal:
                    run.terminal_outputs.append(
                        BranchOutput(node_id=node.id, branch_id=branch_id, data=output)
                    )
                    logger.debug(
                        f"Branch {branch_id} ended at '{node.id}' after "
                        f"{len(run.path_log.branch_items(branch_id))} node(s)"
                    )
                    return

                if self.event_bus:
                    for edge in decision.edges:
                        await self.event_bus.emit_edge_traversed(
                            run.flow_id,
                            run.execution_id,
                            node.id,
                            edge.target_node_id,
                            decision.matched_label or "",
                            branch_id,
                        )

                if not decision.is_fan_out:
                    node_id = decision.edges[0].target_node_id
                    data = output
                    continue

                children = [
                    _Continuation(edge.target_node_id, f"{branch_id}.{i}", dict(output))
                    for i, edge in enumerate(decision.edges)
                ]
                logger.info(f"⑂ Fan-out at '{node.id}': {len(children)} branches")
                if self.event_bus:
                    await self.event_bus.emit_branch_forked(
                        run.flow_id, run.execution_id, node.id, [c.branch_id for c in children]
                    )
                await self._walk_concurrently(run, children)
                return

        except (_RunStopped, ExecutionAlreadyTerminalError):
            logger.info(f"Branch {branch_id} stopped; execution {run.execution_id} is closed")
            run.cancel_event.set()

    async def _record_entry(
        self,
        run: _RunContext,
        node: NodeSpec,
        branch_id: str,
        data: dict[str, Any],
    ) -> None:
        """Append the path item and persist the current node with its input."""

        async def persist(item: ExecutionPathItem) -> None:
            def mutate(state: ExecutionState) -> None:
                state.ensure_live()
                state.execution_path.append(item)
                state.current_node_id = node.id
                state.current_data = dict(data)

            await self.store.update(run.execution_id, mutate)

        await run.path_log.append(node.id, branch_id, data, persist)

    async def _persist(
        self,
        run: _RunContext,
        node: NodeSpec,
        data: dict[str, Any],
        count_step: bool,
    ) -> None:
        def mutate(state: ExecutionState) -> None:
            state.ensure_live()
            state.current_node_id = node.id
            state.current_data = dict(data)
            if count_step:
                state.steps_executed += 1

        await self.store.update(run.execution_id, mutate)

    async def _dispatch_with_retries(
        self,
        run: _RunContext,
        node: NodeSpec,
        branch_id: str,
        data: dict[str, Any],
        resume_input: dict[str, Any] | None,
    ) -> NodeResult:
        run.steps += 1
        if run.steps > self.config.max_steps:
            raise StepLimitExceededError(self.config.max_steps)

        max_attempts = 1 if node.disable_retry_on_fail else self.config.max_retries + 1

        if self.event_bus:
            await self.event_bus.emit_node_started(
                run.flow_id, run.execution_id, node.id, branch_id, node.type.value
            )

        last_error: Exception | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                ctx = await self._build_context(run, node, branch_id, data, resume_input, attempt)
                result = await self.dispatcher.dispatch(node, ctx)
            except UnknownNodeTypeError:
                logger.error(f"✗ No handler for '{node.id}' ({node.type.value})")
                raise
            except Exception as e:
                last_error = e
                retryable = e.retryable if isinstance(e, NodeExecutionError) else True
                if not retryable:
                    logger.error(f"✗ '{node.id}' failed (not retryable): {e}")
                    raise NodeDispatchError(node.id, attempt, e) from e
                if attempt >= max_attempts:
                    break

                delay = self.config.backoff_delay(attempt - 1)
                logger.warning(
                    f"↻ '{node.id}' failed ({e}); retry {attempt}/{max_attempts - 1} in {delay}s"
                )
                if self.event_bus:
                    await self.event_bus.emit_node_retry(
                        run.flow_id, run.execution_id, node.id, attempt, max_attempts, str(e)
                    )
                await asyncio.sleep(delay)
                if run.cancelled:
                    raise _RunStopped() from e
                continue

            if self.event_bus:
                await self.event_bus.emit_node_completed(
                    run.flow_id,
                    run.execution_id,
                    node.id,
                    branch_id,
                    result.output_label,
                    result.suspend,
                )
            return result

        logger.error(f"✗ '{node.id}' failed after {max_attempts} attempt(s): {last_error}")
        raise NodeDispatchError(node.id, max_attempts, last_error)

    async def _build_context(
        self,
        run: _RunContext,
        node: NodeSpec,
        branch_id: str,
        data: dict[str, Any],
        resume_input: dict[str, Any] | None,
        attempt: int,
    ) -> NodeContext:
        credentials: dict[str, Any] = {}
        if node.credential_id:
            if self.credentials is None:
                raise NodeExecutionError(
                    f"Node '{node.id}' needs credential '{node.credential_id}' "
                    "but no credential resolver is configured",
                    retryable=False,
                )
            credentials = await self.credentials.resolve(node.credential_id)

        return NodeContext(
            node=node,
            input_data=dict(data),
            params=render(node.parameters, data),
            execution_id=run.execution_id,
            flow_id=run.flow_id,
            context_id=run.context_id,
            branch_id=branch_id,
            credentials=credentials,
            http_client=run.http_client,
            attachments=run.graph.get_attachments(node.id),
            resume_input=dict(resume_input) if resume_input is not None else None,
            attempt=attempt,
        )

    # === SETTLING ===

    async def _settle(self, run: _RunContext) -> ExecutionState:
        if run.cancelled:
            return await self.get_execution_state(run.execution_id)

        pending = list(run.pending)
        outputs = sorted(run.terminal_outputs, key=lambda o: branch_sort_key(o.branch_id))

        def mutate(state: ExecutionState) -> None:
            if state.status.is_terminal:
                return
            # Ended paths survive a suspension so the resumed run can join them
            state.branch_outputs = [o.model_copy(deep=True) for o in outputs]
            if pending:
                state.pending = pending
                waiting = any(p.reason == PendingReason.WAITING for p in pending)
                state.transition_to(ExecutionStatus.WAITING if waiting else ExecutionStatus.PAUSED)
                return

            if len(outputs) == 1:
                state.output_data = dict(outputs[0].data)
            elif outputs:
                state.output_data = {"branches": [o.model_dump() for o in outputs]}
            else:
                state.output_data = dict(state.current_data)
            state.transition_to(ExecutionStatus.COMPLETED)

        state = await self.store.update(run.execution_id, mutate)

        if state.status == ExecutionStatus.COMPLETED:
            logger.info(f"✓ Execution {state.id} completed after {state.steps_executed} steps")
            if self.event_bus:
                await self.event_bus.emit_execution_completed(
                    run.flow_id, state.id, state.output_data
                )
        elif state.status.is_resumable:
            logger.info(
                f"⏸ Execution {state.id} is {state.status} at {[p.node_id for p in pending]}"
            )
            if self.event_bus:
                await self.event_bus.emit_execution_suspended(
                    run.flow_id,
                    state.id,
                    paused=state.status == ExecutionStatus.PAUSED,
                    pending_nodes=[p.node_id for p in pending],
                )
        return state

    async def _fail(self, run: _RunContext, error: Exception) -> None:
        message = str(error) or type(error).__name__

        def mutate(state: ExecutionState) -> None:
            if state.status.is_terminal:
                return
            state.error = message
            state.pending = []
            state.transition_to(ExecutionStatus.FAILED)

        try:
            await self.store.update(run.execution_id, mutate)
        except Exception as persist_error:
            logger.error(f"Could not record failure of {run.execution_id}: {persist_error}")

        logger.error(f"✗ Execution {run.execution_id} failed: {message}")
        if self.event_bus:
            await self.event_bus.emit_execution_failed(run.flow_id, run.execution_id, message)

    # === CONTROL ===

    async def continue_flow(
        self,
        execution_id: str,
        additional_input: dict[str, Any] | None = None,
    ) -> ExecutionState:
        """
        Resume a waiting or paused execution.

        ``additional_input`` is merged into the current data and into every
        parked continuation. Waiting nodes are re-dispatched with it as their
        resume input; paused nodes are entered normally. Everything needed
        comes from the store, so this works after a process restart.

        Raises:
            ExecutionNotFoundError: unknown id
            ExecutionAlreadyTerminalError: the run is closed
            InvalidExecutionStateError: the run is not waiting or paused
        """
        additional = dict(additional_input or {})
        state = await self.get_execution_state(execution_id)
        self._check_resumable(state)

        graph = await FlowGraph.load(self.flows, state.flow_id)
        for pending in state.pending:
            if graph.get_node(pending.node_id) is None:
                raise GraphLoadError(
                    state.flow_id, f"pending node '{pending.node_id}' no longer exists"
                )

        claimed: list[PendingNode] = []

        def claim(current: ExecutionState) -> None:
            # Test-and-set: a concurrent resume sees in_progress and loses
            self._check_resumable(current)
            claimed.extend(current.pending)
            current.pending = []
            current.current_data = {**current.current_data, **additional}
            current.transition_to(ExecutionStatus.IN_PROGRESS)

        state = await self.store.update(execution_id, claim)

        run = self._new_run(state, graph)
        set_trace_context(
            execution_id=run.execution_id, flow_id=run.flow_id, context_id=run.context_id
        )
        logger.info(f"▶ Resuming execution {execution_id} at {[p.node_id for p in claimed]}")
        if self.event_bus:
            await self.event_bus.emit_execution_resumed(run.flow_id, execution_id, additional)

        continuations = [
            _Continuation(
                node_id=p.node_id,
                branch_id=p.branch_id,
                data={**p.data, **additional},
                resume_input=dict(additional) if p.reason == PendingReason.WAITING else None,
            )
            for p in claimed
        ]
        return await self._drive(run, continuations)

    def _check_resumable(self, state: ExecutionState) -> None:
        if state.status.is_terminal:
            raise ExecutionAlreadyTerminalError(state.id, state.status)
        if not state.status.is_resumable:
            raise InvalidExecutionStateError(
                state.id, state.status, [ExecutionStatus.WAITING, ExecutionStatus.PAUSED]
            )

    async def pause_flow_execution(self, execution_id: str) -> ExecutionState:
        """
        Pause an execution.

        A run walking in this process stops at its next node boundary; a
        waiting run becomes paused. Pausing a paused run is a no-op.
        """
        state = await self.get_execution_state(execution_id)
        if state.status.is_terminal:
            raise ExecutionAlreadyTerminalError(execution_id, state.status)

        run = self._runs.get(execution_id)
        if run is not None:
            run.pause_event.set()
            logger.info(f"Pause requested for execution {execution_id}")
            return state

        if state.status == ExecutionStatus.PAUSED:
            return state

        if state.status != ExecutionStatus.WAITING:
            raise InvalidExecutionStateError(
                execution_id, state.status, [ExecutionStatus.IN_PROGRESS, ExecutionStatus.WAITING]
            )

        def pause(current: ExecutionState) -> None:
            current.transition_to(ExecutionStatus.PAUSED)

        state = await self.store.update(execution_id, pause)
        if self.event_bus:
            await self.event_bus.emit_execution_suspended(
                state.flow_id,
                execution_id,
                paused=True,
                pending_nodes=[p.node_id for p in state.pending],
            )
        return state

    async def cancel_flow_execution(self, execution_id: str) -> ExecutionState:
        """
        Cancel an execution. Idempotent: a closed run is returned unchanged.

        The state flips to cancelled immediately; a run walking in this
        process notices at its next boundary and discards in-flight results.
        """
        state = await self.get_execution_state(execution_id)
        if state.status.is_terminal:
            logger.debug(f"Execution {execution_id} is already {state.status}; nothing to cancel")
            return state

        changed = False

        def cancel(current: ExecutionState) -> None:
            nonlocal changed
            if current.status.is_terminal:
                return
            current.transition_to(ExecutionStatus.CANCELLED)
            current.output_data = {"cancelled": True}
            current.pending = []
            changed = True

        state = await self.store.update(execution_id, cancel)

        run = self._runs.get(execution_id)
        if run is not None:
            run.cancel_event.set()

        if changed:
            logger.info(f"Cancelled execution {execution_id}")
            if self.event_bus:
                await self.event_bus.emit_execution_cancelled(state.flow_id, execution_id)
        return state

    # === QUERIES ===

    async def get_execution_state(self, execution_id: str) -> ExecutionState:
        state = await self.store.get_by_id(execution_id)
        if state is None:
            raise ExecutionNotFoundError(execution_id)
        return state

    async def get_execution_history(
        self, flow_id: str, limit: int | None = None
    ) -> list[ExecutionState]:
        """Executions of a flow, most recently started first."""
        return await self.store.list_history(flow_id, limit=limit)

    async def get_active_execution(self, flow_id: str, context_id: str) -> ExecutionState | None:
        return await self.store.get_active(flow_id, context_id)

    def is_running(self, execution_id: str) -> bool:
        return execution_id in self._runs
