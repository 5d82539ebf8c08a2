"""Docker Hub tag lookup and compatible version selection.

Resolving the image tag for a component whose version is not pinned takes
two steps:

1. ``DockerHubClient.get_tags`` fetches every published tag of an image
   using the anonymous bearer-token flow of the registry API.
2. ``VersionResolver.get_compatible_tag`` picks the newest stable tag that is
   not a breaking upgrade from the running release, and reports whether a
   breaking release exists.

Example::

    resolver = VersionResolver()
    result = resolver.get_compatible_tag("srcd/cli-daemon", "v0.10.0")
    result.tag                  # "v0.10.1"
    result.has_breaking_update  # True when 0.11.0 or later was published
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from engine_spine.core.errors import NoCompatibleVersionError, RegistryError
from engine_spine.docker.versions import ZERO, VersionTag

logger = logging.getLogger(__name__)

AUTH_URL = "https://auth.docker.io/token"
REGISTRY_URL = "https://registry-1.docker.io"
REGISTRY_SERVICE = "registry.docker.io"

LATEST = "latest"

# Development builds run against whatever was published last.
DEV_VERSIONS = frozenset({"", "dev"})

# Images built by the integration test suite are never resolved remotely.
INTEGRATION_TESTING_TAG = "integration-testing"


@dataclass(frozen=True)
class CompatibleTag:
    """Result of a tag resolution."""

    tag: str
    has_breaking_update: bool = False


class DockerHubClient:
    """Minimal, anonymous client for the Docker Hub registry API.

    Parameters
    ----------
    client
        Optional preconfigured ``httpx.Client`` (tests pass one built on
        ``httpx.MockTransport``). When omitted a client is created per call.
    timeout
        Request timeout in seconds.
    """

    def __init__(self, client: httpx.Client | None = None, timeout: float = 10.0) -> None:
        self._client = client
        self.timeout = timeout

    def get_tags(self, image: str) -> list[str]:
        """Return every tag published for ``image``.

        Raises
        ------
        RegistryError
            If either request fails or answers with a non-200 status.
        """
        if self._client is not None:
            return self._get_tags(self._client, image)
        with httpx.Client(timeout=self.timeout) as client:
            return self._get_tags(client, image)

    def _get_tags(self, client: httpx.Client, image: str) -> list[str]:
        token = self._get_token(client, image)
        payload = self._get_json(
            client,
            f"{REGISTRY_URL}/v2/{image}/tags/list",
            headers={"Authorization": f"Bearer {token}"},
            what=f"tag list for {image}",
        )
        tags = payload.get("tags") or []
        logger.debug("registry.tags", extra={"image": image, "count": len(tags)})
        return list(tags)

    def _get_token(self, client: httpx.Client, image: str) -> str:
        payload = self._get_json(
            client,
            AUTH_URL,
            params={"service": REGISTRY_SERVICE, "scope": f"repository:{image}:pull"},
            what=f"auth token for {image}",
        )
        token = payload.get("token")
        if not token:
            raise RegistryError(f"registry returned no auth token for {image}")
        return token

    @staticmethod
    def _get_json(
        client: httpx.Client,
        url: str,
        *,
        what: str,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            resp = client.get(url, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise RegistryError(f"could not fetch {what}: {exc}", cause=exc) from exc

        if resp.status_code != 200:
            raise RegistryError(
                f"could not fetch {what}: unexpected status {resp.status_code}",
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise RegistryError(f"could not decode {what}", cause=exc) from exc


class VersionResolver:
    """Select the newest non-breaking stable tag of an image."""

    def __init__(self, client: DockerHubClient | None = None) -> None:
        self.client = client or DockerHubClient()

    def get_compatible_tag(self, image: str, current_version: str) -> CompatibleTag:
        """Resolve the tag to run for ``image`` given the running release.

        Raises
        ------
        VersionUnparsableError
            If ``current_version`` is not a semantic version.
        RegistryError
            If the tag list cannot be fetched.
        NoCompatibleVersionError
            If no stable tag at or above the current version exists below
            the breaking threshold.
        """
        if current_version in DEV_VERSIONS:
            return CompatibleTag(LATEST)
        if current_version == INTEGRATION_TESTING_TAG:
            return CompatibleTag(INTEGRATION_TESTING_TAG)

        current = VersionTag.parse(current_version)
        tags = self.client.get_tags(image)
        return select_compatible(image, current, tags)


def select_compatible(image: str, current: VersionTag, tags: list[str]) -> CompatibleTag:
    """Scan ``tags`` for the best candidate relative to ``current``.

    Unparsable and pre-release tags are skipped, as are tags older than
    ``current``. Tags at or past the breaking threshold only set the
    breaking flag.
    """
    threshold = current.breaking_threshold()
    best = ZERO
    has_breaking_update = False

    for raw in tags:
        candidate = VersionTag.try_parse(raw)
        if candidate is None or candidate.is_prerelease:
            continue
        if candidate < current:
            continue
        if candidate >= threshold:
            has_breaking_update = True
            continue
        if candidate > best:
            best = candidate

    if best.is_zero:
        raise NoCompatibleVersionError(image)

    return CompatibleTag(best.tag(), has_breaking_update)


def get_compatible_tag(
    image: str,
    current_version: str,
    client: DockerHubClient | None = None,
) -> CompatibleTag:
    """Convenience wrapper around :meth:`VersionResolver.get_compatible_tag`."""
    return VersionResolver(client).get_compatible_tag(image, current_version)


__all__ = [
    "CompatibleTag",
    "DockerHubClient",
    "INTEGRATION_TESTING_TAG",
    "LATEST",
    "VersionResolver",
    "get_compatible_tag",
    "select_compatible",
]
