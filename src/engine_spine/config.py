"""Configuration models for engine-spine.

Pydantic v2 models for the engine's user configuration (the public ports
each component binds on the host) and its runtime knobs (timeouts, network
name, release version used for image resolution).

Key Concepts:
    EngineConfig: Root model. Loaded from ``~/.srcd/config.yml`` with
        ``load()``, overridden by ``ENGINE_*`` variables with ``from_env()``.
    ComponentsConfig: One ``ComponentConfig`` per user-facing component.
        Missing ports fall back to the documented defaults.

Architecture Decisions:
    - from_env() classmethod: Explicit env-var parsing rather than
      ``pydantic-settings``, keeping the dependency surface small.
    - Override precedence: kwargs > env vars > config file > field defaults.
    - A missing config file is not an error; a malformed one is
      (``ConfigError``).

Related Modules:
    - :mod:`engine_spine.components.specs` — Reads ports and CPU quota
    - :mod:`engine_spine.docker.gateway` — Reads timeouts and network name
    - :mod:`engine_spine.cli.errors` — Points users at the config file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from engine_spine.core.errors import ConfigError

DEFAULT_CONFIG_PATH = Path.home() / ".srcd" / "config.yml"

DEFAULT_PORTS: dict[str, int] = {
    "bblfshd": 9432,
    "bblfsh_web": 8081,
    "gitbase_web": 8080,
    "gitbase": 3306,
    "daemon": 4242,
}


class ComponentConfig(BaseModel):
    """Settings for a single component container."""

    port: int = Field(default=0, ge=0, le=65535, description="Public port bound on the host")


class GitbaseConfig(ComponentConfig):
    """Gitbase additionally takes a CPU quota."""

    port: int = 3306
    cpu_fraction: float = Field(
        default=0.9,
        gt=0.0,
        le=1.0,
        description="Fraction of the host CPUs gitbase may use",
    )


class ComponentsConfig(BaseModel):
    """Per-component configuration, keyed like the YAML file."""

    bblfshd: ComponentConfig = Field(default_factory=lambda: ComponentConfig(port=DEFAULT_PORTS["bblfshd"]))
    bblfsh_web: ComponentConfig = Field(default_factory=lambda: ComponentConfig(port=DEFAULT_PORTS["bblfsh_web"]))
    gitbase_web: ComponentConfig = Field(default_factory=lambda: ComponentConfig(port=DEFAULT_PORTS["gitbase_web"]))
    gitbase: GitbaseConfig = Field(default_factory=GitbaseConfig)
    daemon: ComponentConfig = Field(default_factory=lambda: ComponentConfig(port=DEFAULT_PORTS["daemon"]))

    def set_defaults(self) -> ComponentsConfig:
        """Fill ports left at zero with their defaults."""
        for name, port in DEFAULT_PORTS.items():
            component = getattr(self, name)
            if component.port == 0:
                component.port = port
        return self


class EngineConfig(BaseModel):
    """Root configuration for the orchestration engine.

    Example::

        config = EngineConfig.load()
        config.components.gitbase.port  # 3306 unless overridden
    """

    components: ComponentsConfig = Field(default_factory=ComponentsConfig)

    network: str = Field(default="srcd-cli-network", description="Docker network all components join")
    release: str = Field(
        default="",
        description="Engine release; used as the current version when resolving image tags",
    )

    query_timeout: float = Field(default=5.0, gt=0, description="Seconds allowed for state queries")
    start_timeout: float = Field(default=600.0, gt=0, description="Seconds allowed for create/start")
    pull_timeout: float = Field(default=600.0, gt=0, description="Seconds allowed for an image pull")
    progress_timeout: float = Field(
        default=2.0,
        ge=0,
        description="Seconds before long operations show progress to the user",
    )

    config_path: Path = Field(default=DEFAULT_CONFIG_PATH, exclude=True)

    @classmethod
    def load(cls, path: str | Path | None = None, **overrides: Any) -> EngineConfig:
        """Read a YAML config file; a missing file yields defaults."""
        config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
        data: dict[str, Any] = {}
        if config_path.exists():
            try:
                loaded = yaml.safe_load(config_path.read_text(encoding="utf-8"))
            except yaml.YAMLError as exc:
                raise ConfigError(f"could not parse config file {config_path}", cause=exc) from exc
            if loaded is not None and not isinstance(loaded, dict):
                raise ConfigError(f"config file {config_path} must contain a mapping")
            data = loaded or {}

        data.update(overrides)
        data["config_path"] = config_path
        try:
            config = cls.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(f"invalid config file {config_path}: {exc}", cause=exc) from exc
        config.components.set_defaults()
        return config

    @classmethod
    def from_env(cls, path: str | Path | None = None, **overrides: Any) -> EngineConfig:
        """Load the config file, then apply ENGINE_* environment variables."""
        env_map = {
            "network": "ENGINE_NETWORK",
            "release": "ENGINE_RELEASE",
            "query_timeout": "ENGINE_QUERY_TIMEOUT",
            "start_timeout": "ENGINE_START_TIMEOUT",
            "pull_timeout": "ENGINE_PULL_TIMEOUT",
            "progress_timeout": "ENGINE_PROGRESS_TIMEOUT",
        }
        values: dict[str, Any] = {}
        for field_name, env_var in env_map.items():
            env_val = os.environ.get(env_var)
            if env_val is None:
                continue
            if field_name.endswith("_timeout"):
                try:
                    values[field_name] = float(env_val)
                except ValueError as exc:
                    raise ConfigError(f"{env_var} must be a number, got {env_val!r}") from exc
            else:
                values[field_name] = env_val

        env_path = os.environ.get("ENGINE_CONFIG")
        if path is None and env_path:
            path = env_path

        values.update(overrides)
        return cls.load(path, **values)
