"""Marketplace download resolution.

Turns a plugin id into the URL of the artifact to install, using one of
three strategies in priority order: a direct URL override, a pinned version,
or the marketplace's build-based compatibility lookup.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Literal
from urllib.parse import urlencode, urljoin, urlsplit, urlunsplit

from ideup.errors import IdeupError
from ideup.marketplace.transport import Transport

logger = logging.getLogger(__name__)

MARKETPLACE_URL = "https://plugins.jetbrains.com"
MARKETPLACE_HOST = "plugins.jetbrains.com"
ARTIFACT_PATH_PREFIX = "/files/"
ARCHIVE_SUFFIXES = (".zip", ".jar")
PLUGIN_MANAGER_ENDPOINT = f"{MARKETPLACE_URL}/pluginManager"
VERSION_DOWNLOAD_ENDPOINT = f"{MARKETPLACE_URL}/plugin/download"

ResolutionStrategy = Literal["direct", "pinned", "build"]


class ResolutionError(IdeupError):
    """The marketplace could not resolve a download for a plugin."""

    def __init__(
        self,
        message: str,
        plugin_id: str | None = None,
        status_code: int | None = None,
        url: str | None = None,
    ):
        self.status_code = status_code
        self.url = url
        super().__init__(message, plugin_id)


@dataclass(frozen=True)
class ResolvedArtifact:
    """Where to download a plugin from."""

    plugin_id: str
    url: str
    strategy: ResolutionStrategy
    version: str | None = None


def plugin_manager_url(plugin_id: str, build: str) -> str:
    query = urlencode({"action": "download", "id": plugin_id, "build": build})
    return f"{PLUGIN_MANAGER_ENDPOINT}?{query}"


def version_download_url(plugin_id: str, version: str) -> str:
    query = urlencode({"pluginId": plugin_id, "version": version})
    return f"{VERSION_DOWNLOAD_ENDPOINT}?{query}"


def guess_version(url: str) -> str | None:
    """Guess the artifact version from its file name.

    Marketplace artifacts are named like ``plugin-name-1.2.3.zip``. URLs that
    don't end in an archive name (e.g. a lookup endpoint) give None.
    """
    name = PurePosixPath(urlsplit(url).path).name
    for suffix in ARCHIVE_SUFFIXES:
        if name.endswith(suffix):
            version = name[: -len(suffix)].rsplit("-", 1)[-1]
            return version or None
    return None


def rewrite_host(url: str, downloads_host: str | None) -> str:
    """Point marketplace artifact URLs at an alternate distribution host.

    Only ``https://plugins.jetbrains.com/files/...`` URLs are rewritten; any
    other URL is returned unchanged.

    Args:
        url: Resolved artifact URL
        downloads_host: Host to substitute (e.g., downloads.marketplace.jetbrains.com)

    Returns:
        The rewritten or original URL
    """
    if not downloads_host:
        return url

    parts = urlsplit(url)
    host = (parts.hostname or "").lower()
    if host != MARKETPLACE_HOST or not parts.path.startswith(ARTIFACT_PATH_PREFIX):
        return url

    rewritten = urlunsplit(("https", downloads_host, parts.path, parts.query, ""))
    logger.debug("Rewrote %s -> %s", url, rewritten)
    return rewritten


class DownloadResolver:
    """Resolves plugin ids to artifact URLs via the marketplace."""

    def __init__(
        self,
        transport: Transport,
        pins: dict[str, str] | None = None,
        direct_urls: dict[str, str] | None = None,
    ):
        """Initialize the resolver.

        Args:
            transport: HTTP transport used for marketplace lookups
            pins: Plugin id to exact version to install
            direct_urls: Plugin id to artifact URL, used verbatim
        """
        self._transport = transport
        self._pins = pins or {}
        self._direct_urls = direct_urls or {}

    def strategy_for(self, plugin_id: str) -> ResolutionStrategy:
        if plugin_id in self._direct_urls:
            return "direct"
        if plugin_id in self._pins:
            return "pinned"
        return "build"

    def resolve(
        self, plugin_id: str, build: str, timeout: float | None = None
    ) -> ResolvedArtifact:
        """Resolve the artifact to install for a plugin.

        Args:
            plugin_id: Plugin id from plugin.xml
            build: Full IDE build string (e.g., "RM-252.23892.415")
            timeout: Optional cap on the request timeout

        Returns:
            ResolvedArtifact

        Raises:
            ResolutionError: If the marketplace doesn't answer with the artifact or a redirect
            TransportError: If the marketplace can't be reached
        """
        strategy = self.strategy_for(plugin_id)

        if strategy == "direct":
            url = self._direct_urls[plugin_id]
            logger.info("Using direct URL for '%s': %s", plugin_id, url)
            return ResolvedArtifact(plugin_id, url, strategy, guess_version(url))

        if strategy == "pinned":
            version = self._pins[plugin_id]
            logger.info("Resolving '%s' pinned to version %s", plugin_id, version)
            url = self._follow_once(
                version_download_url(plugin_id, version),
                plugin_id,
                f"{plugin_id}@{version}",
                timeout,
            )
            return ResolvedArtifact(plugin_id, url, strategy, version)

        logger.info("Resolving '%s' for build %s", plugin_id, build)
        url = self._follow_once(
            plugin_manager_url(plugin_id, build),
            plugin_id,
            f"{plugin_id} build {build}",
            timeout,
        )
        return ResolvedArtifact(plugin_id, url, strategy, guess_version(url))

    def _follow_once(
        self, request_url: str, plugin_id: str, context: str, timeout: float | None
    ) -> str:
        with self._transport.get(request_url, timeout=timeout) as response:
            if response.is_redirect:
                location = response.header("Location")
                if not location:
                    raise ResolutionError(
                        f"Missing Location header in marketplace redirect for {context}",
                        plugin_id=plugin_id,
                        status_code=response.status,
                        url=request_url,
                    )
                resolved = urljoin(MARKETPLACE_URL, location)
                logger.debug("Marketplace redirected %s to %s", context, resolved)
                return resolved

            if response.is_success:
                return request_url

            raise ResolutionError(
                f"Marketplace lookup failed (HTTP {response.status}) for {context}",
                plugin_id=plugin_id,
                status_code=response.status,
                url=request_url,
            )
