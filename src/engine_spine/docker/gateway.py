"""Container runtime gateway.

Thin query/command interface to docker, driven through the ``docker`` CLI
(subprocess). The gateway has no policy: it looks containers up by name,
creates, starts, removes and lists them, and manages the images, volumes and
network the engine uses. Deciding *what* should run is the orchestrator's
job.

Architecture Decisions:
    - subprocess, not docker-py: works with Docker Desktop, Podman's docker
      shim and remote contexts without an SDK dependency.
    - No caching: every query re-reads the runtime, because containers can
      be stopped or removed out of band.
    - Every non-zero exit is raised as ``DockerCommandError`` and passed
      through :func:`engine_spine.docker.errors.classify` before it leaves
      the gateway, so callers only ever see typed errors.

Timeouts:
    - state queries: ``EngineConfig.query_timeout`` (seconds)
    - create/start/remove: ``EngineConfig.start_timeout``
    - image pulls: ``EngineConfig.pull_timeout``
"""

from __future__ import annotations

import json
import logging
import re
import shutil
import subprocess
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from engine_spine.components.registry import split_image_id
from engine_spine.components.specs import StartConfig
from engine_spine.config import EngineConfig
from engine_spine.core.errors import (
    ContainerNotFoundError,
    DaemonError,
    DockerCommandError,
    DockerNotFoundError,
    StartFailedError,
)
from engine_spine.docker.errors import classify

logger = logging.getLogger(__name__)

RUNNING = "running"

_PORT_RE = re.compile(r"^(?:(?P<ip>.*):(?P<public>\d+)->)?(?P<private>\d+)/(?P<type>\w+)$")


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Port:
    """A container port, published on ``ip:public_port`` when public."""

    ip: str
    private_port: int
    public_port: int = 0
    type: str = "tcp"


@dataclass
class ContainerState:
    """Snapshot of a container as reported by ``docker ps``."""

    id: str
    names: list[str]
    image: str
    state: str
    status: str = ""
    ports: list[Port] = field(default_factory=list)

    @property
    def running(self) -> bool:
        return self.state == RUNNING

    @property
    def name(self) -> str:
        return self.names[0] if self.names else ""

    def public_ports(self) -> list[int]:
        return sorted({p.public_port for p in self.ports if p.public_port})

    @classmethod
    def from_ps(cls, row: dict[str, Any]) -> ContainerState:
        """Build from one ``docker ps --format '{{json .}}'`` row."""
        names = [n.strip().lstrip("/") for n in row.get("Names", "").split(",") if n.strip()]
        status = row.get("Status", "")
        state = row.get("State") or (RUNNING if status.startswith("Up") else "exited")
        return cls(
            id=row.get("ID", ""),
            names=names,
            image=row.get("Image", ""),
            state=state,
            status=status,
            ports=parse_ports(row.get("Ports", "")),
        )


def parse_ports(text: str) -> list[Port]:
    """Parse the ``Ports`` column, e.g. ``0.0.0.0:8080->80/tcp, 9432/tcp``."""
    ports = []
    for chunk in text.split(","):
        match = _PORT_RE.match(chunk.strip())
        if match is None:
            continue
        ports.append(
            Port(
                ip=match.group("ip") or "",
                private_port=int(match.group("private")),
                public_port=int(match.group("public") or 0),
                type=match.group("type"),
            )
        )
    return ports


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class ContainerGateway:
    """Query and command interface to the docker CLI.

    Parameters
    ----------
    config
        Engine configuration; supplies timeouts and the network name.
    docker_cmd
        Path of the docker binary. Looked up on PATH when omitted.

    Example::

        gateway = ContainerGateway(EngineConfig.load())
        state = gateway.info("srcd-cli-gitbase")
        state.running, state.public_ports()
    """

    def __init__(self, config: EngineConfig | None = None, docker_cmd: str | None = None) -> None:
        self.config = config or EngineConfig()
        self._docker_cmd = docker_cmd or self._find_docker()

    @staticmethod
    def _find_docker() -> str:
        docker = shutil.which("docker")
        if docker is None:
            raise DockerNotFoundError(
                "Docker CLI not found on PATH. Install Docker or add it to PATH.\n"
                "  - Linux:   https://docs.docker.com/engine/install/\n"
                "  - macOS:   https://docs.docker.com/desktop/install/mac-install/"
            )
        return docker

    @property
    def network(self) -> str:
        return self.config.network

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def version(self) -> str:
        """API version reported by the docker daemon."""
        result = self._run_docker(
            ["version", "--format", "{{.Server.APIVersion}}"],
            timeout=self.config.query_timeout,
        )
        return result.stdout.strip()

    def list(self) -> list[ContainerState]:
        """Every container, running or not."""
        return self._ps(["--all"])

    def info(self, name: str) -> ContainerState:
        """Current state of container ``name``.

        Raises
        ------
        ContainerNotFoundError
            If no container has exactly that name.
        """
        for state in self._ps(["--all", "--filter", f"name={name}"]):
            if name in state.names:
                return state
        raise ContainerNotFoundError(name)

    def is_running(self, name: str, image: str = "") -> bool:
        """Whether ``name`` runs, and runs ``image`` when one is given.

        Image references without a tag compare as ``latest``.
        """
        try:
            state = self.info(name)
        except ContainerNotFoundError:
            return False

        if not state.running:
            return False
        if not image:
            return True
        return split_image_id(state.image) == split_image_id(image)

    def kill(self, name: str) -> None:
        """Force-remove container ``name``.

        Raises
        ------
        ContainerNotFoundError
            If the container does not exist.
        """
        state = self.info(name)
        self._run_docker(["rm", "--force", state.id], timeout=self.config.start_timeout)
        logger.info("container.removed", extra={"container": name})

    def info_or_start(self, name: str, start_fn: Callable[[], Any]) -> ContainerState:
        """Return the running container ``name``, starting it first if needed.

        ``start_fn`` is only called when the container is not running.

        Raises
        ------
        StartFailedError
            If ``start_fn`` fails or the container cannot be found after it.
        """
        try:
            current = self.info(name)
        except ContainerNotFoundError:
            current = None
        if current is not None and current.running:
            return current

        try:
            start_fn()
            return self.info(name)
        except Exception as exc:
            raise StartFailedError(name, classify(exc)) from exc

    def start(self, name: str, cfg: StartConfig) -> None:
        """Create and start ``name`` from ``cfg`` and attach it to the engine network.

        A stale container with the same name is removed and creation retried
        once, so the container always carries the requested configuration.
        """
        container_id = self._force_create(name, cfg)
        self._run_docker(["start", container_id], timeout=self.config.start_timeout)
        self._connect_to_network(container_id, cfg.network or self.network)
        logger.info("container.started", extra={"container": name, "image": cfg.image})

    def logs(self, name: str, stop: threading.Event, since: str | None = None) -> Iterator[str]:
        """Follow the output of container ``name`` until ``stop`` is set.

        Only lines written after ``since`` (an RFC 3339 timestamp, now by
        default) are yielded. The ``docker logs`` process is terminated as
        soon as ``stop`` is set or the generator is closed.

        Raises
        ------
        ContainerNotFoundError
            If the container does not exist.
        """
        state = self.info(name)
        since = since or datetime.now(UTC).isoformat()
        cmd = [self._docker_cmd, "logs", "--follow", "--since", since, state.id]
        logger.debug("docker.exec", extra={"cmd": " ".join(cmd)})
        try:
            proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
        except FileNotFoundError as exc:
            raise DockerNotFoundError(f"docker CLI not found: {self._docker_cmd}", cause=exc) from exc

        # Reading blocks until docker prints; the watcher unblocks it on stop.
        watcher = threading.Thread(target=_terminate_on, args=(stop, proc), daemon=True, name="engine-logs")
        watcher.start()
        try:
            for line in proc.stdout:
                if stop.is_set():
                    break
                yield line.rstrip("\n")
        finally:
            if proc.poll() is None:
                proc.terminate()
            proc.stdout.close()
            proc.wait(timeout=self.config.query_timeout)

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def list_images(self) -> list[str]:
        """Every tagged image as ``repository:tag``."""
        refs = []
        for row in self._json_lines(["images", "--format", "{{json .}}"], self.config.query_timeout):
            repo, tag = row.get("Repository", ""), row.get("Tag", "")
            if repo and repo != "<none>" and tag and tag != "<none>":
                refs.append(f"{repo}:{tag}")
        return refs

    def versions_installed(self, image: str) -> list[str]:
        """Tags of ``image`` present locally."""
        versions = []
        for ref in self.list_images():
            name, version = split_image_id(ref)
            if name == image:
                versions.append(version)
        return versions

    def is_installed(self, image: str, version: str = "") -> bool:
        """Whether ``image`` is present; any tag when ``version`` is empty."""
        versions = self.versions_installed(image)
        if not version:
            return bool(versions)
        return version in versions

    def pull(self, image: str, version: str = "latest") -> None:
        ref = f"{image}:{version or 'latest'}"
        self._run_docker(["pull", ref], timeout=self.config.pull_timeout)

    def ensure_installed(self, image: str, version: str = "") -> bool:
        """Pull ``image:version`` unless present. Returns True when pulled."""
        if self.is_installed(image, version):
            return False

        ref = f"{image}:{version or 'latest'}"
        logger.info("image.installing", extra={"image": ref})
        self.pull(image, version or "latest")
        logger.info("image.installed", extra={"image": ref})
        return True

    def remove_image(self, ref: str) -> None:
        self._run_docker(["rmi", "--force", ref], timeout=self.config.start_timeout)
        logger.debug("image.removed", extra={"image": ref})

    # ------------------------------------------------------------------
    # Volumes and network
    # ------------------------------------------------------------------

    def create_volume(self, name: str) -> None:
        """Create volume ``name`` unless it already exists."""
        exists = self._run_docker(["volume", "inspect", name], check=False, timeout=self.config.query_timeout)
        if exists.returncode == 0:
            return
        self._run_docker(["volume", "create", name], timeout=self.config.query_timeout)
        logger.debug("volume.created", extra={"volume": name})

    def list_volumes(self) -> list[str]:
        result = self._run_docker(["volume", "ls", "--format", "{{.Name}}"], timeout=self.config.query_timeout)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def remove_volume(self, name: str) -> None:
        self._run_docker(["volume", "rm", "--force", name], timeout=self.config.start_timeout)
        logger.debug("volume.removed", extra={"volume": name})

    def remove_network(self) -> None:
        """Remove the engine network; a missing network is not an error."""
        if not self._network_exists(self.network):
            return
        self._run_docker(["network", "rm", self.network], timeout=self.config.query_timeout)
        logger.debug("network.removed", extra={"network": self.network})

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _ps(self, args: list[str]) -> list[ContainerState]:
        rows = self._json_lines(["ps", *args, "--format", "{{json .}}"], self.config.query_timeout)
        return [ContainerState.from_ps(row) for row in rows]

    def _json_lines(self, args: list[str], timeout: float) -> list[dict[str, Any]]:
        result = self._run_docker(args, timeout=timeout)
        rows = []
        for line in result.stdout.splitlines():
            if not line.strip():
                continue
            try:
                rows.append(json.loads(line))
            except json.JSONDecodeError as exc:
                raise DockerCommandError(
                    f"could not decode docker output: {line!r}",
                    args=args,
                    cause=exc,
                ) from exc
        return rows

    def _force_create(self, name: str, cfg: StartConfig) -> str:
        args = self._create_args(name, cfg)
        try:
            result = self._run_docker(args, timeout=self.config.start_timeout)
        except (DockerCommandError, DaemonError) as create_err:
            # Only a name clash is worth a retry; anything else re-raises.
            try:
                stale = self.info(name)
            except ContainerNotFoundError:
                raise create_err from None
            logger.debug("container.recreate", extra={"container": name, "id": stale.id})
            self._run_docker(["rm", "--force", stale.id], timeout=self.config.start_timeout)
            result = self._run_docker(args, timeout=self.config.start_timeout)
        return result.stdout.strip().splitlines()[-1] if result.stdout.strip() else name

    def _create_args(self, name: str, cfg: StartConfig) -> list[str]:
        args = ["create", "--name", name]
        for key, value in cfg.env.items():
            args += ["--env", f"{key}={value}"]
        for port in cfg.ports:
            args += ["--publish", f"{port.public}:{port.private}"]
        for volume, target in cfg.volumes.items():
            args += ["--mount", f"type=volume,source={volume},target={target}"]
        for source, target in cfg.binds.items():
            args += ["--mount", f"type=bind,source={source},target={target}"]
        for link in cfg.links:
            args += ["--link", link]
        if cfg.privileged:
            args.append("--privileged")
        if cfg.cpus:
            args += ["--cpus", f"{cfg.cpus:g}"]
        args.append(cfg.image)
        args += cfg.cmd
        return args

    def _network_exists(self, network: str) -> bool:
        result = self._run_docker(["network", "inspect", network], check=False, timeout=self.config.query_timeout)
        return result.returncode == 0

    def _connect_to_network(self, container_id: str, network: str) -> None:
        if not self._network_exists(network):
            logger.info("network.creating", extra={"network": network})
            self._run_docker(["network", "create", network], timeout=self.config.query_timeout)
        self._run_docker(["network", "connect", network, container_id], timeout=self.config.query_timeout)

    def _run_docker(
        self,
        args: list[str],
        check: bool = True,
        timeout: float = 60,
    ) -> subprocess.CompletedProcess[str]:
        """Run a docker CLI command."""
        cmd = [self._docker_cmd, *args]
        logger.debug("docker.exec", extra={"cmd": " ".join(cmd)})
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise DockerCommandError(
                f"docker command timed out after {timeout:g}s: {' '.join(args)}",
                args=args,
                cause=exc,
            ) from exc
        except FileNotFoundError as exc:
            raise DockerNotFoundError(f"docker CLI not found: {self._docker_cmd}", cause=exc) from exc

        if check and result.returncode != 0:
            stderr = result.stderr.strip()
            err = DockerCommandError(
                f"docker {args[0]} failed (exit {result.returncode}): {stderr}",
                args=args,
                returncode=result.returncode,
                stderr=stderr,
            )
            raise classify(err)
        return result


def _terminate_on(stop: threading.Event, proc: subprocess.Popen) -> None:
    stop.wait()
    if proc.poll() is None:
        proc.terminate()


__all__ = [
    "ContainerGateway",
    "ContainerState",
    "Port",
    "parse_ports",
]
