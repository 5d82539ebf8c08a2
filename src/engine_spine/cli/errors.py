"""
Human-friendly error reporting for the CLI.

Runtime failures reach the user through :func:`fatal`, which classifies the
error first and turns the structured kinds that have a known remedy (a host
port already in use) into actionable text.
"""

from __future__ import annotations

from pathlib import Path
from typing import NoReturn

import typer
from rich.markup import escape

from engine_spine.cli.utils import err_console
from engine_spine.config import DEFAULT_CONFIG_PATH
from engine_spine.core.errors import BindConflictError, EngineError, StartFailedError
from engine_spine.docker.errors import classify

DOCS_URL = "https://docs.sourced.tech/engine/learn-more/commands#srcd"


def humanize(err: BaseException, config_path: str | Path | None = None) -> str:
    """Message to show the user for ``err``."""
    err = _root_cause(classify(err))
    if isinstance(err, BindConflictError):
        conf_file = str(config_path or DEFAULT_CONFIG_PATH)
        service = err.service or "the component"
        return (
            f"Port {err.port} is already allocated.\n"
            f"You can define the port to be bound by {service} in {conf_file}, and then run:\n"
            f"srcd init [workdir] --config {conf_file}\n\n"
            f"Read more in the documentation: {DOCS_URL}"
        )
    if isinstance(err, EngineError):
        return err.message
    return str(err)


def _root_cause(err: BaseException) -> BaseException:
    """Unwrap ``StartFailedError`` so a bind conflict behind it is reported as such."""
    while isinstance(err, StartFailedError) and err.cause is not None:
        cause = classify(err.cause)
        if not isinstance(cause, BindConflictError):
            break
        err = cause
    return err


def fatal(err: BaseException, operation: str, config_path: str | Path | None = None) -> NoReturn:
    """Print ``<operation>: <message>`` to stderr and exit with status 1."""
    err_console.print(f"[bold red]Error[/bold red] {operation}: {escape(humanize(err, config_path))}", highlight=False)
    raise typer.Exit(code=1)
