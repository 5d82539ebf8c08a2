"""
Logging context management using contextvars.

Values bound here are attached to every log entry emitted by the current
thread or task, e.g. the component being started during a dependency walk.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog


def get_logger(name: str | None = None) -> Any:
    """Get a structlog logger, named after the calling module by convention."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Attach key/value pairs to all subsequent log entries."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Drop every bound context value."""
    structlog.contextvars.clear_contextvars()


def get_context() -> dict[str, Any]:
    """Return a copy of the currently bound context."""
    return dict(structlog.contextvars.get_contextvars())


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Bind context for the duration of a block, restoring it afterwards."""
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield
