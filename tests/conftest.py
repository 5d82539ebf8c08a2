"""
Shared pytest fixtures for engine-spine tests.

This module provides:
- An in-memory container gateway (no Docker required)
- Small registries for dependency-walk tests
- Isolation of ``ENGINE_*`` environment variables

Usage:
    def test_something(fake_gateway, diamond_registry):
        ...
"""

from __future__ import annotations

from typing import Any

import pytest

from engine_spine.components.registry import Component, ComponentRegistry
from engine_spine.components.specs import StartConfig
from engine_spine.config import EngineConfig
from engine_spine.core.errors import ContainerNotFoundError, DockerCommandError
from engine_spine.docker.errors import classify
from engine_spine.docker.gateway import ContainerGateway, ContainerState, Port


class FakeGateway(ContainerGateway):
    """ContainerGateway keeping containers, images and volumes in memory.

    ``info_or_start`` and ``is_running`` are inherited unchanged, so tests
    exercise the real lookup/start policy on top of the fake runtime.
    """

    def __init__(self, config: EngineConfig | None = None, fail: tuple[str, ...] = ()) -> None:
        super().__init__(config or EngineConfig(), docker_cmd="docker")
        self.containers: dict[str, ContainerState] = {}
        self.configs: dict[str, StartConfig] = {}
        self.started: list[str] = []
        self.killed: list[str] = []
        self.pulled: list[str] = []
        self.images: list[str] = []
        self.volumes: list[str] = []
        self.network_removed = False
        self.fail = set(fail)

    def add(self, name: str, image: str = "img:latest", running: bool = True, ports: tuple[int, ...] = ()) -> None:
        self.containers[name] = ContainerState(
            id=f"id-{name}",
            names=[name],
            image=image,
            state="running" if running else "exited",
            ports=[Port("0.0.0.0", 80, p) for p in ports],
        )

    def version(self) -> str:
        return "1.41"

    def list(self) -> list[ContainerState]:
        return list(self.containers.values())

    def info(self, name: str) -> ContainerState:
        try:
            return self.containers[name]
        except KeyError:
            raise ContainerNotFoundError(name) from None

    def kill(self, name: str) -> None:
        self.info(name)
        del self.containers[name]
        self.killed.append(name)

    def start(self, name: str, cfg: StartConfig) -> None:
        self.started.append(name)
        self.configs[name] = cfg
        if name in self.fail:
            raise classify(
                DockerCommandError(
                    f"docker start failed (exit 125): Error response from daemon: driver failed on endpoint {name} (abc)"
                )
            )
        self.add(name, image=cfg.image, ports=tuple(cfg.public_ports()))

    def list_images(self) -> list[str]:
        return list(self.images)

    def ensure_installed(self, image: str, version: str = "") -> bool:
        ref = f"{image}:{version or 'latest'}"
        if ref in self.images:
            return False
        self.pulled.append(ref)
        self.images.append(ref)
        return True

    def remove_image(self, ref: str) -> None:
        self.images.remove(ref)

    def create_volume(self, name: str) -> None:
        if name not in self.volumes:
            self.volumes.append(name)

    def list_volumes(self) -> list[str]:
        return list(self.volumes)

    def remove_volume(self, name: str) -> None:
        self.volumes.remove(name)

    def remove_network(self) -> None:
        self.network_removed = True


def simple_factory(name: str, image: str, *options: Any) -> StartConfig:
    """Start configuration builder that only carries the image and options."""
    return StartConfig(image=image).apply(*options)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def clean_engine_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep ENGINE_* variables of the developer's shell out of tests."""
    import os

    for key in list(os.environ):
        if key.startswith("ENGINE_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def make_gateway():
    """Factory fixture: ``make_gateway(fail=("name",))``."""
    return FakeGateway


@pytest.fixture
def factory():
    return simple_factory


@pytest.fixture
def diamond_registry() -> ComponentRegistry:
    """A depends on B and C; both depend on D."""
    return ComponentRegistry(
        [
            Component(name="d", image="org/d", version="v1.0.0"),
            Component(name="b", image="org/b", version="v1.0.0", dependencies=("d",)),
            Component(name="c", image="org/c", version="v1.0.0", dependencies=("d",)),
            Component(name="a", image="org/a", version="v1.0.0", dependencies=("b", "c")),
        ]
    )


@pytest.fixture
def engine_config(tmp_path) -> EngineConfig:
    """Default configuration pointing at a config file under tmp_path."""
    return EngineConfig.load(tmp_path / "config.yml")
