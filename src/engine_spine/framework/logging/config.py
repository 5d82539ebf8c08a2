"""
Logging configuration.

Provides a single entry point for configuring structured logging.
Configuration is read from environment variables:
- ENGINE_LOG_LEVEL: DEBUG | INFO | WARNING | ERROR (default: INFO)
- ENGINE_LOG_FORMAT: json | console (default: console)

Usage:
    # Configure at application startup
    from engine_spine.framework.logging import configure_logging
    configure_logging()

    # Or with explicit settings
    configure_logging(level="DEBUG", format="json")
"""

import logging
import os
import sys
from typing import Literal

import structlog
from structlog.types import Processor

# Track if logging has been configured
_configured = False


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None,
    format: Literal["json", "console"] | None = None,
    force: bool = False,
) -> None:
    """
    Configure structured logging for the application.

    Should be called once at application startup (CLI entry).
    Subsequent calls are no-ops unless force=True.

    Args:
        level: Log level (overrides ENGINE_LOG_LEVEL env var)
        format: Output format (overrides ENGINE_LOG_FORMAT env var)
        force: Reconfigure even if already configured
    """
    global _configured

    if _configured and not force:
        return

    log_level = (level or os.environ.get("ENGINE_LOG_LEVEL", "INFO")).upper()
    log_format = (format or os.environ.get("ENGINE_LOG_FORMAT", "console")).lower()
    level_no = logging.getLevelName(log_level)
    if not isinstance(level_no, int):
        raise ValueError(f"unknown log level: {log_level}")

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Configure stdlib logging to match
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level_no,
        force=True,
    )
    logging.getLogger("engine_spine").setLevel(level_no)

    _configured = True


def is_debug_enabled() -> bool:
    """Check if DEBUG level logging is enabled."""
    return logging.getLogger("engine_spine").isEnabledFor(logging.DEBUG)


def is_configured() -> bool:
    """Check if logging has been configured."""
    return _configured
