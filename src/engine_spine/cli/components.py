"""
CLI: ``engine-spine components`` — inspect and install component images.

Usage::

    engine-spine components list              # installed components
    engine-spine components list --all        # every known component
    engine-spine components install srcd-cli-gitbase srcd-cli-bblfshd
"""

from __future__ import annotations

import typer

from engine_spine.cli import utils
from engine_spine.cli.errors import fatal
from engine_spine.core.errors import EngineError

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_components(
    ctx: typer.Context,
    show_all: bool = typer.Option(False, "--all", "-a", help="Include components that are not installed."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List engine components with their install and run status."""
    from engine_spine.cli.app import get_config

    config = get_config(ctx)
    try:
        rows = utils.build_orchestrator(config).status()
    except EngineError as e:
        fatal(e, "could not list components", config.config_path)

    if not show_all:
        rows = [row for row in rows if row.installed]
    utils.output_rows(rows, as_json=json_out, title="Components")


@app.command("install")
def install(
    ctx: typer.Context,
    names: list[str] = typer.Argument(..., help="Component names or images."),
) -> None:
    """Pull the images of the given components."""
    from engine_spine.cli.app import get_config

    config = get_config(ctx)
    try:
        orchestrator = utils.build_orchestrator(config)
    except EngineError as e:
        fatal(e, "could not connect to docker", config.config_path)

    for name in names:
        try:
            pulled = orchestrator.install(name)
        except EngineError as e:
            fatal(e, f"could not install {name}", config.config_path)

        if pulled:
            utils.console.print(f"[bold green]✓[/] {name} installed")
        else:
            utils.console.print(f"[dim]{name} already installed[/dim]")
