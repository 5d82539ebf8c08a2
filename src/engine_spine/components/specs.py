"""Start configuration for component containers.

A ``StartConfig`` is the data handed to ``ContainerGateway.start``: image,
environment, published ports, mounts and resource limits. Configurations
are assembled from option functions (``with_env``, ``with_port``...) so
call sites can layer overrides on top of the per-component defaults that
``StartConfigFactory`` produces.

Each component's environment references the container names and ports of
its dependencies; those are guaranteed to be running on the same network
before the dependent is created.
"""

from __future__ import annotations

import hashlib
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from engine_spine.components import registry as reg
from engine_spine.config import EngineConfig
from engine_spine.core.errors import UnknownComponentError

BBLFSH_PARSE_PORT = 9432
BBLFSH_CONTROL_PORT = 9433
PILOSA_PORT = 10101
DAEMON_PORT = 4242
WEB_PRIVATE_PORT = 80

GITBASE_MOUNT_PATH = "/opt/repos"
GITBASE_INDEX_MOUNT_PATH = "/var/lib/gitbase/index"
PILOSA_MOUNT_PATH = "/data"
DOCKER_SOCKET = "/var/run/docker.sock"


@dataclass(frozen=True)
class PortBinding:
    """Host port ``public`` forwarded to container port ``private``."""

    public: int
    private: int


@dataclass
class StartConfig:
    """Everything needed to create one container."""

    image: str
    env: dict[str, str] = field(default_factory=dict)
    ports: list[PortBinding] = field(default_factory=list)
    volumes: dict[str, str] = field(default_factory=dict)
    binds: dict[str, str] = field(default_factory=dict)
    cmd: list[str] = field(default_factory=list)
    privileged: bool = False
    links: list[str] = field(default_factory=list)
    cpus: float | None = None
    network: str | None = None

    def apply(self, *options: ConfigOption) -> StartConfig:
        for option in options:
            option(self)
        return self

    def public_ports(self) -> list[int]:
        return [p.public for p in self.ports]


ConfigOption = Callable[[StartConfig], None]


def with_env(key: str, value: str) -> ConfigOption:
    def option(cfg: StartConfig) -> None:
        cfg.env[key] = value

    return option


def with_port(public: int, private: int) -> ConfigOption:
    """Publish ``private`` on host port ``public``, replacing any earlier binding."""

    def option(cfg: StartConfig) -> None:
        cfg.ports = [p for p in cfg.ports if p.private != private]
        cfg.ports.append(PortBinding(public, private))

    return option


def with_volume(name: str, container_path: str) -> ConfigOption:
    """Mount the named volume ``name`` at ``container_path``."""

    def option(cfg: StartConfig) -> None:
        cfg.volumes[name] = container_path

    return option


def with_shared_directory(host_path: str, container_path: str) -> ConfigOption:
    """Bind-mount a host directory into the container."""

    def option(cfg: StartConfig) -> None:
        cfg.binds[host_path] = container_path

    return option


def with_cmd(*args: str) -> ConfigOption:
    """Append arguments to the container command."""

    def option(cfg: StartConfig) -> None:
        cfg.cmd.extend(args)

    return option


def workdir_hash(workdir: str | Path) -> str:
    """Stable identifier for a working directory, used in volume names."""
    return hashlib.sha1(str(workdir).encode("utf-8")).hexdigest()


class StartConfigFactory:
    """Build the ``StartConfig`` of each default component.

    Parameters
    ----------
    config
        Engine configuration (public ports, CPU quota, network).
    workdir
        Directory holding the git repositories gitbase serves.
    datadir
        Engine data directory (``~/.srcd`` by default).
    """

    def __init__(
        self,
        config: EngineConfig,
        workdir: str | Path,
        datadir: str | Path | None = None,
        cpu_count: int | None = None,
    ) -> None:
        self.config = config
        self.workdir = str(Path(workdir).resolve())
        self.datadir = str(datadir) if datadir is not None else str(config.config_path.parent)
        self.cpu_count = cpu_count or os.cpu_count() or 1

        self._builders: dict[str, Callable[[str], StartConfig]] = {
            reg.DAEMON.name: self._daemon,
            reg.BBLFSHD.name: self._bblfshd,
            reg.PILOSA.name: self._pilosa,
            reg.GITBASE.name: self._gitbase,
            reg.BBLFSH_WEB.name: self._bblfsh_web,
            reg.GITBASE_WEB.name: self._gitbase_web,
            reg.MYSQL_CLI.name: self._mysql_cli,
        }

    @property
    def workdir_hash(self) -> str:
        return workdir_hash(self.workdir)

    def volume_names(self) -> list[str]:
        """Named volumes created for the current working directory."""
        return [self._index_volume(), self._pilosa_volume()]

    def build(self, name: str, image: str, *options: ConfigOption) -> StartConfig:
        """Start configuration for component ``name`` running ``image``."""
        try:
            builder = self._builders[name]
        except KeyError:
            raise UnknownComponentError(name, available=list(self._builders)) from None
        cfg = builder(image)
        cfg.network = self.config.network
        return cfg.apply(*options)

    def __call__(self, name: str, image: str, *options: ConfigOption) -> StartConfig:
        return self.build(name, image, *options)

    # ------------------------------------------------------------------
    # Per-component defaults
    # ------------------------------------------------------------------

    def _index_volume(self) -> str:
        return f"{reg.GITBASE.name}-index-{self.workdir_hash}"

    def _pilosa_volume(self) -> str:
        return f"{reg.PILOSA.name}-{self.workdir_hash}"

    def _daemon(self, image: str) -> StartConfig:
        return StartConfig(image=image).apply(
            with_port(self.config.components.daemon.port, DAEMON_PORT),
            with_shared_directory(DOCKER_SOCKET, DOCKER_SOCKET),
            with_cmd(f"--workdir={self.workdir}", f"--data={self.datadir}"),
        )

    def _bblfshd(self, image: str) -> StartConfig:
        cfg = StartConfig(image=image, privileged=True)
        return cfg.apply(
            with_cmd(f"-ctl-address=0.0.0.0:{BBLFSH_CONTROL_PORT}", "-ctl-network=tcp"),
        )

    def _pilosa(self, image: str) -> StartConfig:
        return StartConfig(image=image).apply(
            with_volume(self._pilosa_volume(), PILOSA_MOUNT_PATH),
        )

    def _gitbase(self, image: str) -> StartConfig:
        gitbase = self.config.components.gitbase
        cfg = StartConfig(image=image, cpus=round(self.cpu_count * gitbase.cpu_fraction, 2))
        return cfg.apply(
            with_env("BBLFSH_ENDPOINT", f"{reg.BBLFSHD.name}:{BBLFSH_PARSE_PORT}"),
            with_env("PILOSA_ENDPOINT", f"{reg.PILOSA.name}:{PILOSA_PORT}"),
            with_port(gitbase.port, 3306),
            with_shared_directory(self.workdir, GITBASE_MOUNT_PATH),
            with_volume(self._index_volume(), GITBASE_INDEX_MOUNT_PATH),
        )

    def _bblfsh_web(self, image: str) -> StartConfig:
        # bblfsh-web dials bblfshd before it joins the network; link them.
        cfg = StartConfig(image=image, links=[reg.BBLFSHD.name])
        return cfg.apply(
            with_cmd(f"-bblfsh-addr={reg.BBLFSHD.name}:{BBLFSH_PARSE_PORT}"),
            with_port(self.config.components.bblfsh_web.port, WEB_PRIVATE_PORT),
        )

    def _gitbase_web(self, image: str) -> StartConfig:
        return StartConfig(image=image).apply(
            with_env(
                "GITBASEPG_DB_CONNECTION",
                f"root@tcp({reg.GITBASE.name})/none?maxAllowedPacket=4194304",
            ),
            with_env("GITBASEPG_BBLFSH_SERVER_URL", f"{reg.BBLFSHD.name}:{BBLFSH_PARSE_PORT}"),
            with_port(self.config.components.gitbase_web.port, WEB_PRIVATE_PORT),
        )

    def _mysql_cli(self, image: str) -> StartConfig:
        return StartConfig(image=image).apply(
            with_env("MYSQL_ALLOW_EMPTY_PASSWORD", "yes"),
            with_cmd("mysql", f"--host={reg.GITBASE.name}", "--user=root"),
        )


__all__ = [
    "ConfigOption",
    "PortBinding",
    "StartConfig",
    "StartConfigFactory",
    "with_cmd",
    "with_env",
    "with_port",
    "with_shared_directory",
    "with_volume",
    "workdir_hash",
]
