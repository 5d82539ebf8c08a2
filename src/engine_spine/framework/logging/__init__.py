"""
Engine Logging - Structured logging on top of structlog.

Usage:
    from engine_spine.framework.logging import configure_logging, get_logger, log_context

    # Configure once at startup
    configure_logging()

    log = get_logger(__name__)
    with log_context(component="srcd-cli-gitbase"):
        log.info("component.starting")
"""

from engine_spine.framework.logging.config import configure_logging, is_configured, is_debug_enabled
from engine_spine.framework.logging.context import (
    bind_context,
    clear_context,
    get_context,
    get_logger,
    log_context,
)

__all__ = [
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_context",
    "get_logger",
    "is_configured",
    "is_debug_enabled",
    "log_context",
]
