"""Request-scoped context variables for tracing across async tasks."""
from contextvars import ContextVar
from typing import Optional
from uuid import uuid4

# Correlation ID for tracing one logical operation across repositories, cache and LLM calls.
# Set by the caller (API layer or job handler) at the start of each unit of work.
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> Optional[str]:
    """Return the current correlation ID, or None outside a unit of work."""
    return correlation_id_var.get()


def ensure_correlation_id() -> str:
    """Return the current correlation ID, creating one if absent."""
    cid = correlation_id_var.get()
    if cid is None:
        cid = str(uuid4())
        correlation_id_var.set(cid)
    return cid
