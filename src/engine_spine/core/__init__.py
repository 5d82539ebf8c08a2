"""Core primitives shared by every engine-spine module."""

from engine_spine.core.errors import (
    BindConflictError,
    ConfigError,
    ContainerNotFoundError,
    DaemonError,
    DockerCommandError,
    DockerNotFoundError,
    EngineError,
    ErrorCategory,
    ErrorContext,
    NoCompatibleVersionError,
    RegistryError,
    StartFailedError,
    UnknownComponentError,
    VersionUnparsableError,
)

__all__ = [
    "BindConflictError",
    "ConfigError",
    "ContainerNotFoundError",
    "DaemonError",
    "DockerCommandError",
    "DockerNotFoundError",
    "EngineError",
    "ErrorCategory",
    "ErrorContext",
    "NoCompatibleVersionError",
    "RegistryError",
    "StartFailedError",
    "UnknownComponentError",
    "VersionUnparsableError",
]
