"""
Observability module for trace correlation and structured logging.

- Trace context (execution, flow, context and node ids) propagated via ContextVar
- Structured JSON logging for production
- Human-readable logging for development
"""

from febroflow.observability.logging import (
    clear_trace_context,
    configure_logging,
    get_trace_context,
    set_trace_context,
)

__all__ = [
    "configure_logging",
    "get_trace_context",
    "set_trace_context",
    "clear_trace_context",
]
