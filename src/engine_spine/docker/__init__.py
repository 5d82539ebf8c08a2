"""Docker - runtime gateway, image tag resolution and error classification.

Related Modules:
    - :mod:`engine_spine.docker.gateway` — ``docker`` CLI wrapper
    - :mod:`engine_spine.docker.hub` — Docker Hub tags, compatible tag selection
    - :mod:`engine_spine.docker.versions` — Semantic version tags
    - :mod:`engine_spine.docker.errors` — Daemon message classifier
"""

from engine_spine.docker.errors import classify
from engine_spine.docker.gateway import ContainerGateway, ContainerState, Port
from engine_spine.docker.hub import CompatibleTag, DockerHubClient, VersionResolver, get_compatible_tag
from engine_spine.docker.versions import VersionTag

__all__ = [
    "CompatibleTag",
    "ContainerGateway",
    "ContainerState",
    "DockerHubClient",
    "Port",
    "VersionResolver",
    "VersionTag",
    "classify",
    "get_compatible_tag",
]
