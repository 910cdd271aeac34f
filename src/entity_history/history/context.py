"""Actor context for history entries.

Holds who is causing the current changes. The context is set by the
integrating application (request middleware, job runner, CLI) and read
by the history listener for every entry it records.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any


# ContextVar for async-safe history context storage
# Each async task/request gets its own isolated context
_history_context: ContextVar[dict[str, Any] | None] = ContextVar(
    "history_context", default=None
)


def set_history_context(
    actor_id: Any | None = None,
    request_id: str | None = None,
) -> None:
    """Set the history context for the current request.

    Creates a new dict to ensure isolation between concurrent requests.

    Args:
        actor_id: Identity of the user or system causing the changes
        request_id: Request correlation ID
    """
    _history_context.set(
        {
            "actor_id": str(actor_id) if actor_id is not None else None,
            "request_id": request_id,
        }
    )


def clear_history_context() -> None:
    """Clear the history context after the request completes."""
    _history_context.set(None)


def get_history_context() -> dict[str, Any]:
    """Get the current history context.

    Returns:
        Shallow copy of current history context dict, or empty dict if not set
    """
    ctx = _history_context.get()
    if ctx is None:
        return {}
    return ctx.copy()


def get_actor_id() -> str | None:
    """Identity of the current actor, None for anonymous or system changes."""
    return get_history_context().get("actor_id")


@contextmanager
def history_context(
    actor_id: Any | None = None,
    request_id: str | None = None,
) -> Iterator[None]:
    """Temporarily set the history context, restoring the previous one.

    Example:
        with history_context(actor_id=user.id):
            session.commit()
    """
    token = _history_context.set(
        {
            "actor_id": str(actor_id) if actor_id is not None else None,
            "request_id": request_id,
        }
    )
    try:
        yield
    finally:
        _history_context.reset(token)
