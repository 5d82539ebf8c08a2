"""Component registry.

A static, read-only table of the containerized services the engine manages
and the components each one needs running first.

Key Concepts:
    Component: Immutable description of one service. ``name`` doubles as the
        container name, so it is the stable identity of the running service.
    ComponentRegistry: Built once from a tuple of components. Construction
        validates the table (unique names, known dependencies, no cycles);
        afterwards it is never mutated and is safe to share between threads.

Example::

    registry = default_registry()
    [c.name for c in registry.dependencies("srcd-cli-gitbase")]
    # ['srcd-cli-bblfshd', 'srcd-cli-pilosa']
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from types import MappingProxyType

from engine_spine.core.errors import UnknownComponentError

NAME_PREFIX = "srcd-cli-"

# Image namespaces whose images belong to the engine.
ENGINE_NAMESPACES = ("srcd", "bblfsh", "srcd-cli")


@dataclass(frozen=True)
class Component:
    """A named, independently managed containerized service."""

    name: str
    image: str
    version: str = ""
    dependencies: tuple[str, ...] = ()
    description: str = ""

    def image_with_version(self, tag: str | None = None) -> str:
        """Render the image reference, e.g. ``srcd/gitbase:v0.19.0``."""
        return f"{self.image}:{tag or self.version or 'latest'}"


class ComponentRegistry:
    """Immutable lookup table of components keyed by name."""

    def __init__(self, components: Iterable[Component]) -> None:
        table: dict[str, Component] = {}
        for component in components:
            if component.name in table:
                raise ValueError(f"duplicate component name: {component.name}")
            table[component.name] = component

        for component in table.values():
            for dep in component.dependencies:
                if dep not in table:
                    raise ValueError(f"component {component.name} depends on unknown component {dep}")

        self._components = MappingProxyType(table)
        self._images = MappingProxyType({c.image: c.name for c in table.values()})
        self._check_acyclic()

    def _check_acyclic(self) -> None:
        done: set[str] = set()

        def visit(name: str, path: tuple[str, ...]) -> None:
            if name in path:
                cycle = " -> ".join((*path[path.index(name):], name))
                raise ValueError(f"dependency cycle: {cycle}")
            if name in done:
                return
            for dep in self._components[name].dependencies:
                visit(dep, (*path, name))
            done.add(name)

        for name in self._components:
            visit(name, ())

    def is_known(self, name: str) -> bool:
        return name in self._components or name in self._images

    def get(self, name: str) -> Component:
        """Look up a component by container name or image reference."""
        key = self._images.get(name, name)
        try:
            return self._components[key]
        except KeyError:
            raise UnknownComponentError(name, available=list(self._components)) from None

    def dependencies(self, name: str) -> list[Component]:
        """Direct dependencies of ``name`` in declared order."""
        component = self.get(name)
        return [self._components[dep] for dep in component.dependencies]

    def names(self) -> list[str]:
        return list(self._components)

    def __iter__(self) -> Iterator[Component]:
        return iter(self._components.values())

    def __len__(self) -> int:
        return len(self._components)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.is_known(name)


# =============================================================================
# DEFAULT TABLE
# =============================================================================

DAEMON = Component(
    name=NAME_PREFIX + "daemon",
    image="srcd/cli-daemon",
    description="Engine daemon; its tag is resolved against the running release",
)
BBLFSHD = Component(
    name=NAME_PREFIX + "bblfshd",
    image="bblfsh/bblfshd",
    version="v2.11.8-drivers",
    description="Babelfish daemon that parses source code into UASTs",
)
PILOSA = Component(
    name=NAME_PREFIX + "pilosa",
    image="pilosa/pilosa",
    version="v0.9.0",
    description="Bitmap index used by gitbase",
)
GITBASE = Component(
    name=NAME_PREFIX + "gitbase",
    image="srcd/gitbase",
    version="v0.19.0",
    dependencies=(BBLFSHD.name, PILOSA.name),
    description="SQL interface to git repositories",
)
BBLFSH_WEB = Component(
    name=NAME_PREFIX + "bblfsh-web",
    image="bblfsh/web",
    version="v0.7.0",
    dependencies=(BBLFSHD.name,),
    description="Web UI for UAST exploration",
)
GITBASE_WEB = Component(
    name=NAME_PREFIX + "gitbase-web",
    image="srcd/gitbase-web",
    version="v0.6.2",
    dependencies=(GITBASE.name, BBLFSHD.name),
    description="Web UI for SQL queries",
)
MYSQL_CLI = Component(
    name=NAME_PREFIX + "mysql-cli",
    image="mysql",
    version="8.0.16",
    dependencies=(GITBASE.name,),
    description="MySQL client attached to gitbase",
)

DEFAULT_COMPONENTS: tuple[Component, ...] = (
    DAEMON,
    BBLFSHD,
    PILOSA,
    GITBASE,
    BBLFSH_WEB,
    GITBASE_WEB,
    MYSQL_CLI,
)


def default_registry() -> ComponentRegistry:
    """Registry of every component the engine knows how to run."""
    return ComponentRegistry(DEFAULT_COMPONENTS)


def split_image_id(ref: str) -> tuple[str, str]:
    """Split ``image:version``; the version defaults to ``latest``."""
    image, sep, version = ref.partition(":")
    return image, (version if sep and version else "latest")


def is_engine_image(ref: str) -> bool:
    """Whether an image reference lives in one of the engine namespaces."""
    return ref.split("/", 1)[0] in ENGINE_NAMESPACES


__all__ = [
    "BBLFSHD",
    "BBLFSH_WEB",
    "Component",
    "ComponentRegistry",
    "DAEMON",
    "DEFAULT_COMPONENTS",
    "GITBASE",
    "GITBASE_WEB",
    "MYSQL_CLI",
    "NAME_PREFIX",
    "PILOSA",
    "default_registry",
    "is_engine_image",
    "split_image_id",
]
