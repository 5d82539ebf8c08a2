"""Components - what the engine runs and how each one is started.

Key Concepts:
    ComponentRegistry: Immutable table of components and their dependencies.
    StartConfigFactory: Per-component container configuration (env, ports,
        mounts, CPU quota).
    Orchestrator: Dependency walk that starts each component at most once
        per call (:mod:`engine_spine.components.orchestrator`).

The orchestrator is imported from its module; it depends on the docker
gateway, which itself uses the registry and start configuration.
"""

from engine_spine.components.registry import (
    DEFAULT_COMPONENTS,
    Component,
    ComponentRegistry,
    default_registry,
    is_engine_image,
    split_image_id,
)
from engine_spine.components.specs import (
    PortBinding,
    StartConfig,
    StartConfigFactory,
    with_cmd,
    with_env,
    with_port,
    with_shared_directory,
    with_volume,
)

__all__ = [
    "DEFAULT_COMPONENTS",
    "Component",
    "ComponentRegistry",
    "PortBinding",
    "StartConfig",
    "StartConfigFactory",
    "default_registry",
    "is_engine_image",
    "split_image_id",
    "with_cmd",
    "with_env",
    "with_port",
    "with_shared_directory",
    "with_volume",
]
