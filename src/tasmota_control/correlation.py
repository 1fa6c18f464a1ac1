"""
Correlation ID tracking for command tracing across async operations.

Every device command runs inside a correlation scope so that the publish, the
matching reply and the state changes it produces share one ID in the logs,
even when several commands are in flight on the same broker session.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager

__all__ = [
    "correlation_context",
    "generate_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
]

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "tasmota_correlation_id",
    default=None,
)


def generate_correlation_id() -> str:
    """Return a new UUID4 hex correlation ID."""
    return uuid.uuid4().hex


def get_correlation_id() -> str | None:
    """Return the correlation ID of the current context, if any."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    """Set (or clear with None) the correlation ID of the current context."""
    _correlation_id.set(correlation_id)


@contextmanager
def correlation_context(correlation_id: str | None = None) -> Generator[str]:
    """
    Scope a correlation ID to a block.

    Nested scopes reuse the enclosing ID unless one is passed explicitly, so a
    routine and each of its steps log under the same ID. The previous value is
    restored on exit.

    Args:
        correlation_id: Specific ID to use (None to inherit or generate)

    Yields:
        The correlation ID active inside the block

    Example:
        with correlation_context() as corr_id:
            await device.power_on()
    """
    previous_id = get_correlation_id()
    active_id = correlation_id or previous_id or generate_correlation_id()
    set_correlation_id(active_id)
    try:
        yield active_id
    finally:
        set_correlation_id(previous_id)
