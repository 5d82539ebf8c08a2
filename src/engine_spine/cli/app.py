"""
Root Typer application for the engine-spine CLI.

Usage::

    engine-spine start srcd-cli-gitbase-web     # start a component and its dependencies
    engine-spine start srcd-cli-bblfsh-web --port 9000
    engine-spine components list --all
    engine-spine components install srcd-cli-gitbase
    engine-spine stop                           # remove running components
    engine-spine prune --with-images
    engine-spine version
"""

from __future__ import annotations

from pathlib import Path

import typer
from typer import Typer

from engine_spine.cli import utils
from engine_spine.cli.errors import fatal
from engine_spine.core.errors import EngineError
from engine_spine.framework.logging import configure_logging

app = Typer(
    name="engine-spine",
    help="engine-spine — run the source{d} engine components.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _package_version() -> str:
    from importlib.metadata import PackageNotFoundError
    from importlib.metadata import version as pkg_version

    try:
        return pkg_version("engine-spine")
    except PackageNotFoundError:
        from engine_spine import __version__

        return __version__


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"engine-spine {_package_version()}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    config: str | None = typer.Option(None, "--config", "-c", help="Path to config.yml."),
    log_level: str | None = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR."),
) -> None:
    """engine-spine CLI — start, inspect and clean up engine components."""
    try:
        configure_logging(level=log_level)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--log-level") from e
    ctx.obj = {"config_path": config}


def get_config(ctx: typer.Context):
    """Load the configuration selected by ``--config``; exits on error."""
    config_path = (ctx.obj or {}).get("config_path")
    try:
        return utils.load_config(config_path)
    except EngineError as e:
        fatal(e, "could not load configuration", config_path)


# ── Commands ─────────────────────────────────────────────────────────────


@app.command()
def start(
    ctx: typer.Context,
    component: str = typer.Argument(..., help="Component name, e.g. srcd-cli-gitbase."),
    port: int | None = typer.Option(None, "--port", "-p", help="Publish the web UI on this host port."),
    workdir: Path | None = typer.Option(None, "--workdir", "-w", help="Directory with git repositories."),
) -> None:
    """Start a component and everything it depends on."""
    config = get_config(ctx)
    try:
        orchestrator = utils.build_orchestrator(config, workdir, pull_progress=False)
        with utils.start_progress(config, orchestrator, component):
            if port is not None:
                state = orchestrator.ensure_exposed(component, port)
            else:
                state = orchestrator.ensure_running(component)
    except EngineError as e:
        fatal(e, f"could not start {component}", config.config_path)

    ports = ", ".join(str(p) for p in state.public_ports()) or "-"
    utils.console.print(f"[bold green]▲[/] {state.name} running (ports: {ports})")


@app.command()
def stop(ctx: typer.Context) -> None:
    """Remove every running engine component."""
    config = get_config(ctx)
    try:
        stopped = utils.build_orchestrator(config).stop_all()
    except EngineError as e:
        fatal(e, "could not stop components", config.config_path)

    if not stopped:
        utils.console.print("[dim]No running components.[/dim]")
    for name in stopped:
        utils.console.print(f"[bold red]▼[/] {name} stopped")


@app.command()
def prune(
    ctx: typer.Context,
    with_images: bool = typer.Option(False, "--with-images", help="Also remove component images."),
) -> None:
    """Remove engine containers, volumes and network."""
    config = get_config(ctx)
    try:
        report = utils.build_orchestrator(config).prune(with_images=with_images)
    except EngineError as e:
        fatal(e, "could not prune", config.config_path)

    utils.console.print(
        f"removed {len(report.containers)} containers, {len(report.volumes)} volumes"
        + (f", {len(report.images)} images" if with_images else "")
    )


@app.command("version")
def show_version(ctx: typer.Context) -> None:
    """Show the engine-spine and docker API versions."""
    typer.echo(f"engine-spine version: {_package_version()}")
    config = get_config(ctx)
    try:
        docker_version = utils.build_orchestrator(config).gateway.version()
    except EngineError as e:
        fatal(e, "could not get docker version", config.config_path)
    typer.echo(f"docker API version: {docker_version}")


# ── Sub-command registration ─────────────────────────────────────────────

from engine_spine.cli.components import app as components_app  # noqa: E402

app.add_typer(components_app, name="components", help="List and install components.")
