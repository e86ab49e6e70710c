"""Runtime helpers for storing per-message trace context.

Each processed message gets a ``trace_id`` that follows it through guard
checks, retrieval, generation and formatting. The values live in a
:class:`contextvars.ContextVar` so they flow into worker threads started with
:func:`asyncio.to_thread` and into every log record through
:class:`civichub.app_logging.TraceContextFilter`, without threading the
identifiers through every function signature.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import TypedDict

__all__ = [
    "TraceRuntimeContext",
    "bind_trace",
    "get_current_trace",
    "get_current_trace_id",
    "reset_trace_context",
    "set_trace_context",
]


class TraceRuntimeContext(TypedDict):
    """Values stored in the trace context while a message is processed."""

    trace_id: str
    tenant_id: str
    sender: str


_trace_context: ContextVar[TraceRuntimeContext | None] = ContextVar(
    "trace_runtime_context", default=None
)


def set_trace_context(
    trace_id: str, tenant_id: str, sender: str
) -> Token[TraceRuntimeContext | None]:
    """Persist trace metadata and return the token needed to restore it."""

    return _trace_context.set(
        {"trace_id": trace_id, "tenant_id": tenant_id, "sender": sender}
    )


def reset_trace_context(token: Token[TraceRuntimeContext | None]) -> None:
    _trace_context.reset(token)


@contextmanager
def bind_trace(trace_id: str, tenant_id: str, sender: str) -> Iterator[None]:
    token = set_trace_context(trace_id, tenant_id, sender)
    try:
        yield
    finally:
        reset_trace_context(token)


def get_current_trace() -> TraceRuntimeContext | None:
    return _trace_context.get()


def get_current_trace_id() -> str | None:
    """Return the trace identifier for the current execution context."""

    context = _trace_context.get()
    if context is None:
        return None
    return context["trace_id"]
