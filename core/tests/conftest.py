"""Shared fixtures and fake node handlers for the febroflow test suite."""

import asyncio

import pytest

from febroflow.config import EngineConfig
from febroflow.errors import FatalNodeError, RetryableNodeError
from febroflow.graph.executor import FlowEngine
from febroflow.graph.flow import (
    ConnectionSpec,
    ConnectionType,
    FlowDefinition,
    FlowSpec,
    NodeSpec,
    NodeType,
)
from febroflow.nodes.base import NodeContext, NodeHandler, NodeHandlerRegistry, NodeResult
from febroflow.nodes.templating import render
from febroflow.observability import clear_trace_context
from febroflow.storage import InMemoryExecutionStore, InMemoryFlowRepository

# === DEFINITION HELPERS ===


def node(node_id: str, type: NodeType = NodeType.CODE, **kwargs) -> NodeSpec:
    return NodeSpec(id=node_id, name=node_id.upper(), type=type, **kwargs)


def edge(
    source: str,
    target: str,
    label: str | None = None,
    type: ConnectionType = ConnectionType.MAIN,
    **kwargs,
) -> ConnectionSpec:
    return ConnectionSpec(
        id=f"{source}->{target}",
        source_node_id=source,
        target_node_id=target,
        label=label,
        type=type,
        **kwargs,
    )


def definition(
    nodes: list[NodeSpec],
    connections: list[ConnectionSpec] | None = None,
    flow_id: str = "flow-1",
    **flow_kwargs,
) -> FlowDefinition:
    return FlowDefinition(
        flow=FlowSpec(id=flow_id, name=flow_id, **flow_kwargs),
        nodes=nodes,
        connections=connections or [],
    )


def chain(*node_ids: str, flow_id: str = "flow-1") -> FlowDefinition:
    """A linear flow of code nodes: n0 -> n1 -> ..."""
    return definition(
        [node(n) for n in node_ids],
        [edge(a, b) for a, b in zip(node_ids, node_ids[1:], strict=False)],
        flow_id=flow_id,
    )


def make_context(spec: NodeSpec, data: dict | None = None, **kwargs) -> NodeContext:
    """Context the engine would build for ``spec`` on input ``data``."""
    data = data or {}
    return NodeContext(
        node=spec,
        input_data=dict(data),
        params=render(spec.parameters, data),
        execution_id="exec-test",
        flow_id=spec.flow_id or "flow-1",
        **kwargs,
    )


# === FAKE HANDLERS ===


class RecordingHandler(NodeHandler):
    """Appends the node id to ``trail`` and answers with the ``label`` parameter."""

    def __init__(self):
        self.calls: list[str] = []
        self.contexts = []

    async def execute(self, node, ctx):
        self.calls.append(node.id)
        self.contexts.append(ctx)
        data = dict(ctx.input_data)
        data["trail"] = [*data.get("trail", []), node.id]
        data["last"] = node.id
        return NodeResult(data=data, output_label=ctx.params.get("label", "default"))


class FlakyHandler(NodeHandler):
    """Raises ``failures`` times, then succeeds."""

    def __init__(self, failures: int, error: type[Exception] = RuntimeError):
        self.failures = failures
        self.error = error
        self.attempts = 0

    async def execute(self, node, ctx):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise self.error(f"boom #{self.attempts}")
        return NodeResult(data={**ctx.input_data, "flaky": "ok"})


class AlwaysFailingHandler(FlakyHandler):
    def __init__(self, error: type[Exception] = RetryableNodeError):
        super().__init__(failures=10**6, error=error)


class FatalHandler(NodeHandler):
    def __init__(self):
        self.attempts = 0

    async def execute(self, node, ctx):
        self.attempts += 1
        raise FatalNodeError("bad configuration")


class FailAfterHandler(NodeHandler):
    """Fails fatally once ``event`` is set."""

    def __init__(self, event: asyncio.Event):
        self.event = event

    async def execute(self, node, ctx):
        await self.event.wait()
        raise FatalNodeError("sibling failure")


class BlockingHandler(NodeHandler):
    """Blocks until ``release`` is set; ``started`` tells the test it is inside."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def execute(self, node, ctx):
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return NodeResult(data={**ctx.input_data, "blocked": node.id})


class SlowHandler(NodeHandler):
    """Sleeps long enough to be cancelled by a failing sibling branch."""

    def __init__(self):
        self.started = asyncio.Event()
        self.cancelled = False
        self.finished = False

    async def execute(self, node, ctx):
        self.started.set()
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        self.finished = True
        return NodeResult(data=dict(ctx.input_data))


class SuspendingHandler(NodeHandler):
    """Suspends on first dispatch; returns the reply when resumed."""

    def __init__(self):
        self.resume_inputs: list[dict | None] = []

    async def execute(self, node, ctx):
        self.resume_inputs.append(ctx.resume_input)
        if ctx.is_resume:
            return NodeResult(data={**ctx.input_data, "reply": ctx.resume_input.get("reply")})
        return NodeResult(data={**ctx.input_data, "asked": node.id}, suspend=True)


class NoOutputHandler(NodeHandler):
    def __init__(self):
        self.calls = 0

    async def execute(self, node, ctx):
        self.calls += 1
        return NodeResult(data=None)


# === FIXTURES ===


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Never read the developer's ~/.febroflow/configuration.json."""
    monkeypatch.setenv("FEBROFLOW_CONFIG", str(tmp_path / "no-config.json"))
    yield
    clear_trace_context()


@pytest.fixture
def recording():
    return RecordingHandler()


@pytest.fixture
def registry(recording):
    registry = NodeHandlerRegistry()
    registry.register(NodeType.CODE, recording)
    registry.register(NodeType.WEBHOOK_TRIGGER, recording)
    return registry


@pytest.fixture
def engine_config(tmp_path):
    def _config(**overrides) -> EngineConfig:
        settings = {
            "max_retries": 3,
            "retry_backoff_base": 0.0,
            "retry_backoff_max": 0.0,
            "storage_path": tmp_path / "storage",
            "file_base_dir": tmp_path / "files",
        }
        settings.update(overrides)
        return EngineConfig(**settings)

    return _config


@pytest.fixture
def make_engine(registry, engine_config):
    def _make(
        *definitions: FlowDefinition,
        store=None,
        event_bus=None,
        credential_resolver=None,
        handlers: dict | None = None,
        **config,
    ) -> FlowEngine:
        for node_type, handler in (handlers or {}).items():
            registry.register(node_type, handler)
        return FlowEngine(
            flow_repository=InMemoryFlowRepository(list(definitions)),
            execution_store=store or InMemoryExecutionStore(),
            registry=registry,
            config=engine_config(**config),
            event_bus=event_bus,
            credential_resolver=credential_resolver,
        )

    return _make
