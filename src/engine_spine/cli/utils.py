"""
CLI utility helpers — runtime wiring and output formatting.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager
from dataclasses import asdict
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

from engine_spine.components.orchestrator import Orchestrator
from engine_spine.components.registry import DAEMON, default_registry
from engine_spine.components.specs import StartConfigFactory
from engine_spine.config import EngineConfig
from engine_spine.core.errors import ContainerNotFoundError, EngineError
from engine_spine.docker.gateway import ContainerGateway
from engine_spine.docker.hub import VersionResolver
from engine_spine.progress import Deferred, LineSource, deferred

logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)


# ── Runtime wiring ───────────────────────────────────────────────────────


def load_config(config_path: str | None = None) -> EngineConfig:
    """Load ``~/.srcd/config.yml`` (or ``config_path``) plus ``ENGINE_*`` overrides."""
    return EngineConfig.from_env(config_path)


def _emit(line: str) -> None:
    err_console.print(line, highlight=False, markup=False)


def progress_reporter(config: EngineConfig):
    """Factory of spinner reporters printing to stderr after ``progress_timeout``."""

    def make(message: str) -> Deferred:
        return Deferred(
            config.progress_timeout,
            message,
            spinner=True,
            emit=_emit,
            stream=sys.stderr,
            is_terminal=err_console.is_terminal,
        )

    return make


def daemon_log_lines(gateway: ContainerGateway, name: str, poll_interval: float = 0.5) -> LineSource:
    """Line source following the output of container ``name``.

    Waits for the container to be created, then relays its logs until the
    stop event is set. Failures are logged, never raised: the start itself
    reports its own errors.
    """

    def lines(stop: threading.Event) -> Iterator[str]:
        while True:
            try:
                gateway.info(name)
                break
            except ContainerNotFoundError:
                if stop.wait(poll_interval):
                    return
            except EngineError as e:
                logger.error("could not get logs from %s: %s", name, e)
                return

        try:
            yield from gateway.logs(name, stop)
        except EngineError as e:
            logger.error("could not get logs from %s: %s", name, e)

    return lines


def start_progress(
    config: EngineConfig, orchestrator: Orchestrator, name: str
) -> AbstractContextManager[Deferred]:
    """Progress shown while ``name`` starts: daemon logs, or a spinner."""
    component = orchestrator.registry.get(name)
    message = f"starting {component.name}, this may take a while"
    if component.name == DAEMON.name:
        return deferred(
            config.progress_timeout,
            message,
            lines=daemon_log_lines(orchestrator.gateway, component.name),
            emit=_emit,
            stream=sys.stderr,
        )
    return deferred(
        config.progress_timeout,
        message,
        spinner=True,
        emit=_emit,
        stream=sys.stderr,
        is_terminal=err_console.is_terminal,
    )


def build_orchestrator(
    config: EngineConfig,
    workdir: str | Path | None = None,
    pull_progress: bool = True,
) -> Orchestrator:
    """Wire registry, gateway, start configuration and resolver together.

    ``pull_progress=False`` drops the spinner around image pulls, for callers
    that show their own progress.
    """
    gateway = ContainerGateway(config)
    factory = StartConfigFactory(config, workdir or Path.cwd())
    return Orchestrator(
        default_registry(),
        gateway,
        factory,
        resolver=VersionResolver(),
        release=config.release,
        reporter=progress_reporter(config) if pull_progress else None,
    )


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / dict to plain dict."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def output_rows(items: list[Any], *, as_json: bool = False, title: str = "") -> None:
    """Render a list of models as a Rich table, or JSON."""
    if as_json:
        console.print_json(json.dumps([_to_dict(i) for i in items], default=str))
        return

    if not items:
        console.print("[dim]No items.[/dim]")
        return

    first = _to_dict(items[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in first:
        table.add_column(col.upper(), overflow="fold")
    for item in items:
        d = _to_dict(item)
        table.add_row(*(_cell(v) for v in d.values()))
    console.print(table)


def _cell(value: Any) -> str:
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, list | tuple):
        return ", ".join(str(v) for v in value)
    return str(value)
