"""
Correlation ids for grouping the log lines of one unit of work.

An MQTT command, a poll cycle or an HTTP request each run inside their own
:func:`correlation_context`, so everything they log (including the state
manager and backend calls they trigger) shares one id.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager

__all__ = [
    "correlation_context",
    "ensure_correlation_id",
    "get_correlation_id",
]

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "eightsleep_correlation_id",
    default=None,
)


def get_correlation_id() -> str | None:
    return _correlation_id.get()


@contextmanager
def correlation_context(correlation_id: str | None = None) -> Generator[str]:
    """
    Run a block under ``correlation_id`` (a fresh uuid4 hex when omitted).

    The previous id is restored on exit.

    Example:
        with correlation_context() as corr_id:
            await adapter.handle_command(cmd)
    """
    token = _correlation_id.set(correlation_id or uuid.uuid4().hex)
    try:
        yield _correlation_id.get() or ""
    finally:
        _correlation_id.reset(token)


def ensure_correlation_id() -> str:
    """Return the current id, creating one for this context if none is set."""
    current_id = _correlation_id.get()
    if current_id is None:
        current_id = uuid.uuid4().hex
        _correlation_id.set(current_id)
    return current_id
