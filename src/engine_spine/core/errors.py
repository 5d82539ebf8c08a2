"""
Structured error types for engine-spine.

Every failure the orchestration engine surfaces is an ``EngineError``
subclass carrying a category, structured context and, where one exists, the
underlying cause. Callers (CLI commands, request handlers) branch on the
type, never on message text; the only place that inspects message text is
:mod:`engine_spine.docker.errors`, which turns the container runtime's
diagnostics into the typed errors defined here.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        EngineError                            │
        │  (category, context, cause)                                   │
        ├──────────────────────────────────────────────────────────────┤
        │  ConfigError          RuntimeEngineError     VersionError      │
        │  (CONFIG)             (RUNTIME)              (VERSION)         │
        │     │                    │                      │              │
        │  UnknownComponent     ContainerNotFound      VersionUnparsable │
        │                       DockerNotFound         NoCompatibleVersion│
        │                       DockerCommandError                       │
        │                       DaemonError                              │
        │                         └ BindConflictError  RegistryError     │
        │                                              (REGISTRY)        │
        │  OrchestrationError                                            │
        │  (ORCHESTRATION)                                               │
        │     └ StartFailedError                                         │
        └──────────────────────────────────────────────────────────────┘

Propagation:
    - ``UnknownComponentError`` is a programmer/config error and is fatal.
    - ``ContainerNotFoundError`` drives the create branch of
      ``ContainerGateway.info_or_start``; it is often not an error at all.
    - ``StartFailedError`` aborts the whole dependency walk; nothing already
      started is rolled back.
    - Resolver errors are fatal to the start attempt that needed a tag.
    - ``BindConflictError`` is humanized by the CLI into remediation text.

Usage:
    from engine_spine.core.errors import StartFailedError

    try:
        gateway.info_or_start(name, start)
    except StartFailedError as e:
        log.error("start.failed", **e.to_dict())
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for routing and reporting."""

    CONFIG = "CONFIG"  # Unknown components, malformed config files
    RUNTIME = "RUNTIME"  # Container runtime failures
    REGISTRY = "REGISTRY"  # Image registry HTTP failures
    VERSION = "VERSION"  # Semantic version resolution
    ORCHESTRATION = "ORCHESTRATION"  # Dependency walk / start failures
    NETWORK = "NETWORK"  # Host port ownership conflicts
    INTERNAL = "INTERNAL"  # Bugs, unexpected state


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Only the fields that are set end up in :meth:`to_dict`.
    """

    component: str | None = None
    image: str | None = None
    container: str | None = None
    operation: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["component", "image", "container", "operation"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class EngineError(Exception):
    """
    Base exception for all engine-spine errors.

    Subclasses set ``default_category``; instances may override it.
    When ``cause`` is given it is also chained as ``__cause__`` so tracebacks
    show the original runtime or transport failure.

    Examples:
        >>> error = EngineError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(component="srcd-cli-gitbase").context.component
        'srcd-cli-gitbase'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> EngineError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(EngineError):
    """Invalid or unreadable configuration."""

    default_category = ErrorCategory.CONFIG


class UnknownComponentError(ConfigError):
    """A component name that is not in the registry."""

    def __init__(self, name: str, available: list[str] | None = None):
        message = f"Unknown component: {name!r}"
        if available:
            message += f". Available: {', '.join(sorted(available))}"
        super().__init__(message, context=ErrorContext(component=name))
        self.name = name


# =============================================================================
# CONTAINER RUNTIME ERRORS
# =============================================================================


class RuntimeEngineError(EngineError):
    """Base class for failures reported by the container runtime."""

    default_category = ErrorCategory.RUNTIME


class ContainerNotFoundError(RuntimeEngineError):
    """No container with the given name exists."""

    def __init__(self, name: str):
        super().__init__("container not found", context=ErrorContext(container=name))
        self.name = name


class DockerNotFoundError(RuntimeEngineError):
    """The docker CLI is not installed or not on PATH."""


class DockerCommandError(RuntimeEngineError):
    """A docker CLI invocation exited non-zero or timed out."""

    def __init__(
        self,
        message: str,
        *,
        args: list[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
        cause: BaseException | None = None,
    ):
        super().__init__(message, cause=cause)
        self.command = args or []
        self.returncode = returncode
        self.stderr = stderr


class DaemonError(RuntimeEngineError):
    """An error returned by the docker daemon, with the service it concerns.

    ``str()`` keeps the daemon's original message.
    """

    def __init__(self, service: str, cause: BaseException):
        super().__init__(str(cause), cause=cause, context=ErrorContext(container=service or None))
        self.service = service


class BindConflictError(DaemonError):
    """A container could not bind a host port that is already allocated."""

    default_category = ErrorCategory.NETWORK

    def __init__(self, service: str, host: str, port: str, cause: BaseException):
        super().__init__(service, cause)
        self.host = host
        self.port = port
        self.context.metadata.update({"host": host, "port": port})


# =============================================================================
# REGISTRY / VERSION ERRORS
# =============================================================================


class RegistryError(EngineError):
    """The image registry could not be queried."""

    default_category = ErrorCategory.REGISTRY

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message, cause=cause)
        self.status_code = status_code


class VersionError(EngineError):
    """Base class for version resolution failures."""

    default_category = ErrorCategory.VERSION


class VersionUnparsableError(VersionError):
    """A version string is not a (tolerant) semantic version."""

    def __init__(self, version: str):
        super().__init__(f"invalid semantic version: {version!r}")
        self.version = version


class NoCompatibleVersionError(VersionError):
    """No published tag is compatible with the current version."""

    def __init__(self, image: str):
        super().__init__(
            f"can't find compatible image in docker registry for {image}",
            context=ErrorContext(image=image),
        )
        self.image = image


# =============================================================================
# ORCHESTRATION ERRORS
# =============================================================================


class OrchestrationError(EngineError):
    """Base class for dependency walk failures."""

    default_category = ErrorCategory.ORCHESTRATION


class StartFailedError(OrchestrationError):
    """A component could not be created or started.

    The message follows ``could not create <name>: <cause>``.
    """

    def __init__(self, name: str, cause: BaseException):
        super().__init__(
            f"could not create {name}: {cause}",
            cause=cause,
            context=ErrorContext(component=name),
        )
        self.name = name


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error, ``INTERNAL`` for foreign exceptions."""
    if isinstance(error, EngineError):
        return error.category
    return ErrorCategory.INTERNAL


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
    "OrchestrationError",
    "RegistryError",
    "RuntimeEngineError",
    "StartFailedError",
    "UnknownComponentError",
    "VersionError",
    "VersionUnparsableError",
    "categorize_error",
]
