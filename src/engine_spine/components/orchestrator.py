"""
Orchestrator - Ensures components and their dependencies are running.

This is the core lifecycle logic:
1. Look the component up in the registry (unknown names fail before any
   side effect)
2. Walk its dependencies depth-first, in declared order
3. Ask the gateway for each component's state, starting it only when it is
   not running
4. Resolve the image tag (pinned version, or the newest compatible release)
   and pull the image when needed

Design Principles:
- One ``seen`` set per top-level call: a component shared by several
  dependents (diamond) gets at most one start attempt per call
- Sequential: no parallel starts, even for independent dependencies
- First error aborts the walk; components already started keep running so
  a retry reuses them
- No cached container state; the runtime is always queried
"""

from __future__ import annotations

from collections.abc import Callable

import structlog
from pydantic import BaseModel, Field

from engine_spine.components.registry import (
    NAME_PREFIX,
    Component,
    ComponentRegistry,
    is_engine_image,
    split_image_id,
)
from engine_spine.components.specs import WEB_PRIVATE_PORT, ConfigOption, StartConfig, with_port
from engine_spine.core.errors import ContainerNotFoundError
from engine_spine.docker.gateway import ContainerGateway, ContainerState
from engine_spine.docker.hub import LATEST, VersionResolver
from engine_spine.framework.logging import log_context
from engine_spine.progress import Deferred

logger = structlog.get_logger(__name__)

StartConfigBuilder = Callable[..., StartConfig]
ReporterFactory = Callable[[str], Deferred]

BREAKING_UPDATE_HINT = (
    "new version of engine is available. Please download the latest release here: "
    "https://github.com/src-d/engine/releases"
)


class ComponentStatus(BaseModel):
    """One row of ``Orchestrator.status()``."""

    name: str
    image: str
    version: str = Field(description="Pinned version, empty when resolved at start")
    installed: bool = False
    running: bool = False
    ports: list[int] = Field(default_factory=list)


class PruneReport(BaseModel):
    """What ``Orchestrator.prune()`` removed."""

    containers: list[str] = Field(default_factory=list)
    volumes: list[str] = Field(default_factory=list)
    images: list[str] = Field(default_factory=list)
    network_removed: bool = False


class Orchestrator:
    """
    Start components in dependency order, each at most once per call.

    Args:
        registry: Table of known components.
        gateway: Container runtime gateway.
        factory: Builds a ``StartConfig`` from ``(name, image, *options)``;
            usually a :class:`~engine_spine.components.specs.StartConfigFactory`.
        resolver: Resolves the tag of components without a pinned version.
            Without one those components run ``latest``.
        release: Running engine release, the current version for resolution.
        reporter: Optional factory of progress reporters wrapped around
            image pulls.

    Example:
        orchestrator = Orchestrator(default_registry(), gateway, factory)
        state = orchestrator.ensure_running("srcd-cli-gitbase-web")
        state.public_ports()  # [8080]
    """

    def __init__(
        self,
        registry: ComponentRegistry,
        gateway: ContainerGateway,
        factory: StartConfigBuilder,
        resolver: VersionResolver | None = None,
        release: str = "",
        reporter: ReporterFactory | None = None,
    ):
        self.registry = registry
        self.gateway = gateway
        self.factory = factory
        self.resolver = resolver
        self.release = release
        self.reporter = reporter

    # ------------------------------------------------------------------
    # Dependency walk
    # ------------------------------------------------------------------

    def ensure_running(self, name: str, *options: ConfigOption) -> ContainerState:
        """
        Ensure ``name`` and everything it depends on is running.

        ``options`` are applied to the start configuration of ``name`` only,
        never to its dependencies.

        Raises:
            UnknownComponentError: ``name`` is not registered.
            StartFailedError: A component could not be started. Components
                started before the failure are left running.
        """
        component = self.registry.get(name)
        seen: set[str] = set()
        state = self._ensure(component, seen, options)
        logger.debug("orchestrator.ensured", component=component.name, visited=sorted(seen))
        return state

    def _ensure(
        self,
        component: Component,
        seen: set[str],
        options: tuple[ConfigOption, ...] = (),
    ) -> ContainerState | None:
        for dep in self.registry.dependencies(component.name):
            self._ensure(dep, seen)

        if component.name in seen:
            return None
        seen.add(component.name)

        with log_context(component=component.name):
            return self.gateway.info_or_start(component.name, self._start_fn(component, options))

    def _start_fn(self, component: Component, options: tuple[ConfigOption, ...]) -> Callable[[], None]:
        def start() -> None:
            tag = self.resolve_tag(component)
            image = component.image_with_version(tag)
            self._ensure_installed(component.image, tag)

            cfg = self.factory(component.name, image, *options)
            for volume in cfg.volumes:
                self.gateway.create_volume(volume)

            logger.info("component.starting", image=image)
            self.gateway.start(component.name, cfg)

        return start

    def resolve_tag(self, component: Component) -> str:
        """Tag to run: the pinned version, else the newest compatible release."""
        if component.version:
            return component.version
        if self.resolver is None:
            return LATEST

        result = self.resolver.get_compatible_tag(component.image, self.release)
        if result.has_breaking_update:
            logger.warning(
                "component.breaking_update_available",
                component=component.name,
                tag=result.tag,
                hint=BREAKING_UPDATE_HINT,
            )
        return result.tag

    def _ensure_installed(self, image: str, tag: str) -> bool:
        if self.reporter is None:
            return self.gateway.ensure_installed(image, tag)

        cancel = self.reporter(f"installing {image}:{tag}").start()
        try:
            return self.gateway.ensure_installed(image, tag)
        finally:
            cancel()

    # ------------------------------------------------------------------
    # Other lifecycle operations
    # ------------------------------------------------------------------

    def ensure_exposed(self, name: str, port: int, private_port: int = WEB_PRIVATE_PORT) -> ContainerState:
        """Ensure ``name`` runs with ``private_port`` published on ``port``.

        A running container bound to a different host port is removed and
        started again with the requested binding.
        """
        component = self.registry.get(name)
        try:
            state = self.gateway.info(component.name)
        except ContainerNotFoundError:
            state = None

        if state is not None and state.running:
            if port in state.public_ports():
                return state
            logger.info(
                "component.restarting",
                component=component.name,
                port=port,
                current=state.public_ports(),
            )
            self.gateway.kill(component.name)

        return self.ensure_running(component.name, with_port(port, private_port))

    def install(self, name: str) -> bool:
        """Pull the image of ``name`` if missing. Returns True when pulled."""
        component = self.registry.get(name)
        tag = self.resolve_tag(component)
        return self._ensure_installed(component.image, tag)

    def kill(self, name: str) -> bool:
        """Remove the container of ``name``; absence is not an error.

        Returns True when a container was removed.
        """
        component = self.registry.get(name)
        try:
            self.gateway.kill(component.name)
        except ContainerNotFoundError:
            logger.debug("component.absent", component=component.name)
            return False
        logger.info("component.stopped", component=component.name)
        return True

    def stop_all(self) -> list[str]:
        """Remove every running registered component."""
        names = set(self.registry.names())
        stopped = []
        for state in self.gateway.list():
            if state.running and state.name in names:
                if self.kill(state.name):
                    stopped.append(state.name)
        return stopped

    def prune(self, with_images: bool = False) -> PruneReport:
        """Remove engine containers, volumes and network, optionally images."""
        report = PruneReport()
        names = set(self.registry.names())
        for state in self.gateway.list():
            if state.name in names:
                if self.kill(state.name):
                    report.containers.append(state.name)

        for volume in self.gateway.list_volumes():
            if volume.startswith(NAME_PREFIX):
                self.gateway.remove_volume(volume)
                report.volumes.append(volume)

        self.gateway.remove_network()
        report.network_removed = True

        if with_images:
            # Only the pinned refs of third-party images; other tags belong to the user.
            pinned = {c.image_with_version() for c in self.registry if c.version}
            for ref in self.gateway.list_images():
                if ref in pinned or is_engine_image(ref):
                    self.gateway.remove_image(ref)
                    report.images.append(ref)

        logger.info(
            "engine.pruned",
            containers=len(report.containers),
            volumes=len(report.volumes),
            images=len(report.images),
        )
        return report

    def status(self) -> list[ComponentStatus]:
        """Installed/running status of every registered component."""
        containers = {state.name: state for state in self.gateway.list()}
        installed: dict[str, set[str]] = {}
        for ref in self.gateway.list_images():
            image, version = split_image_id(ref)
            installed.setdefault(image, set()).add(version)

        rows = []
        for component in self.registry:
            state = containers.get(component.name)
            versions = installed.get(component.image, set())
            rows.append(
                ComponentStatus(
                    name=component.name,
                    image=component.image,
                    version=component.version,
                    installed=component.version in versions if component.version else bool(versions),
                    running=bool(state and state.running),
                    ports=state.public_ports() if state else [],
                )
            )
        return rows


__all__ = [
    "ComponentStatus",
    "Orchestrator",
    "PruneReport",
]
