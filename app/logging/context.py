"""Context propagation for structured logging.

Fields pushed with ``log_context`` are attached to every record emitted
inside the scope (see ``ContextualFilter``). Context lives in a contextvar,
so work submitted to a thread pool must be run through
``bind_log_context`` to keep the caller's incident/user identifiers.
"""

from contextvars import ContextVar, Token, copy_context
from typing import Any, Callable, Dict, Optional


LogContextVar: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})


def get_log_context() -> Dict[str, Any]:
    """Return a copy of the active logging context."""
    return LogContextVar.get().copy()


def push_log_context(**kwargs) -> Token:
    """Merge fields into the logging context.

    Args:
        **kwargs: Fields to add (for example ``incident_id=12``)

    Returns:
        Token for ``pop_log_context``
    """
    current = LogContextVar.get()
    return LogContextVar.set({**current, **kwargs})


def pop_log_context(token: Token) -> None:
    """Restore the logging context captured by ``push_log_context``."""
    LogContextVar.reset(token)


def clear_log_context() -> None:
    """Drop every context field. Used by tests."""
    LogContextVar.set({})


def bind_log_context(func: Callable[..., Any]) -> Callable[..., Any]:
    """Wrap ``func`` so it runs inside a copy of the current context.

    Executors do not propagate contextvars on their own; wrap the callable
    before handing it to ``submit``.

    Example:
        >>> with log_context(incident_id=7):
        ...     executor.submit(bind_log_context(notify_admins), incident)
    """
    ctx = copy_context()

    def _runner(*args, **kwargs):
        return ctx.run(func, *args, **kwargs)

    return _runner


class log_context:
    """Context manager that scopes logging fields.

    Example:
        >>> with log_context(incident_id=42, branch="admins"):
        ...     logger.info("Notifying administrators")
    """

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.token: Optional[Token] = None

    def __enter__(self):
        self.token = push_log_context(**self.kwargs)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.token is not None:
            pop_log_context(self.token)
        return False
