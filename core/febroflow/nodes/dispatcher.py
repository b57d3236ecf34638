"""
Node Dispatcher - resolves a node's handler and invokes it once.

Retries, cancellation and persistence are the executor's business; the
dispatcher only binds the node type to a handler, tags the trace context
and logs the call.
"""

import logging
import time

from febroflow.errors import UnknownNodeTypeError
from febroflow.graph.flow import NodeSpec
from febroflow.nodes.base import NodeContext, NodeHandlerRegistry, NodeResult
from febroflow.observability import set_trace_context

logger = logging.getLogger(__name__)


class NodeDispatcher:
    def __init__(self, registry: NodeHandlerRegistry):
        self.registry = registry

    async def dispatch(self, node: NodeSpec, ctx: NodeContext) -> NodeResult:
        """
        Execute ``node`` through its registered handler.

        Raises:
            UnknownNodeTypeError: no handler for the node's type
            Exception: whatever the handler raises, unchanged
        """
        try:
            handler = self.registry.resolve(node.type)
        except UnknownNodeTypeError:
            raise UnknownNodeTypeError(node.type, node.id) from None
        set_trace_context(node_id=node.id)

        logger.info(f"▶ {node.display_name} ({node.type.value}) attempt {ctx.attempt}")
        start = time.perf_counter()
        result = await handler.execute(node, ctx)
        latency_ms = int((time.perf_counter() - start) * 1000)

        if result is None:
            result = NodeResult(data=None)

        logger.debug(
            f"  ✓ {node.id} -> label '{result.output_label}'"
            f"{' (suspended)' if result.suspend else ''}",
            extra={"latency_ms": latency_ms},
        )
        return result
