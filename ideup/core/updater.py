"""Plugin update orchestrator.

Runs resolve -> download -> install for each selected plugin, one at a time.
A failure is recorded against its plugin and the run moves on to the next.
"""

from __future__ import annotations

import logging
import tempfile
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from ideup.config.parser import ConfigurationError
from ideup.config.schemas import UpdaterConfig
from ideup.core.installer import (
    InstallResult,
    download,
    extract_and_install,
    remove_stale_scratch,
)
from ideup.core.registry import PluginRecord, read_plugin_dir, scan_plugins
from ideup.marketplace.resolver import DownloadResolver, ResolvedArtifact, rewrite_host
from ideup.marketplace.transport import Deadline, Transport, UrllibTransport
from ideup.utils.build import BuildNumber, parse_build
from ideup.utils.filesystem import Extractor, get_extractor, remove_file, safe_filename

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InstallOutcome:
    """What the plugin directory looks like after an install."""

    record: PluginRecord | None
    is_compatible: bool
    backup_path: Path | None = None


@dataclass
class UpdateResult:
    """Result of updating one plugin."""

    plugin_id: str
    current_version: str | None
    success: bool
    target_version: str | None = None
    url: str | None = None
    message: str = ""
    outcome: InstallOutcome | None = None
    dry_run: bool = False


@dataclass
class UpdateSummary:
    """Summary of an update run."""

    build: str
    results: list[UpdateResult] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def all_successful(self) -> bool:
        return all(r.success for r in self.results)


@dataclass(frozen=True)
class PluginStatus:
    """A scanned plugin and whether it works with the build."""

    record: PluginRecord
    is_compatible: bool


def load_registry(plugins_dir: Path | None) -> dict[str, PluginRecord]:
    """Scan a plugins directory after checking it exists.

    Raises:
        ConfigurationError: If the directory is missing or not a directory
    """
    if plugins_dir is None:
        raise ConfigurationError("No plugins directory given")
    if not plugins_dir.is_dir():
        raise ConfigurationError(f"Plugins dir not found: {plugins_dir}", plugins_dir)
    return scan_plugins(plugins_dir)


def require_build(build: str | None) -> BuildNumber:
    """Parse the target build.

    Raises:
        ConfigurationError: If no build was given or it can't be parsed
    """
    if not build:
        raise ConfigurationError("Could not detect build; pass --build, e.g. RM-252.23892.415")
    parsed = parse_build(build)
    if parsed is None:
        raise ConfigurationError(f"Invalid build: {build}")
    return parsed


def list_plugins(registry: dict[str, PluginRecord], build: str) -> list[PluginStatus]:
    """Report each scanned plugin with its compatibility, without changing anything."""
    parsed = require_build(build)
    return [PluginStatus(record, record.is_compatible(parsed)) for record in registry.values()]


def select_plugins(
    registry: dict[str, PluginRecord],
    build: BuildNumber,
    only: Iterable[str] = (),
    only_incompatible: bool = False,
) -> list[PluginRecord]:
    """Apply the id allow-list and the incompatible-only filter."""
    allowed = set(only)
    selected = []
    for plugin_id, record in registry.items():
        if allowed and plugin_id not in allowed:
            continue
        if only_incompatible and record.is_compatible(build):
            continue
        selected.append(record)
    return selected


class PluginUpdater:
    """Updates installed plugins for one IDE build.

    The transport and extractor are injectable so tests can run the whole
    pipeline without a network.
    """

    def __init__(
        self,
        config: UpdaterConfig,
        build: str,
        transport: Transport | None = None,
        extractor: Extractor | None = None,
    ):
        """Initialize the updater.

        Args:
            config: Updater configuration
            build: Full IDE build string
            transport: HTTP transport (default: urllib with config.timeout)
            extractor: Archive extractor (default: from config.extractor)

        Raises:
            ConfigurationError: If the build can't be parsed
        """
        self.config = config
        self.build = build
        self.build_number = require_build(build)
        self.transport = transport or UrllibTransport(timeout=config.timeout)
        self.extractor = extractor or get_extractor(config.extractor)
        self.resolver = DownloadResolver(
            self.transport,
            pins=config.pins,
            direct_urls=config.direct_urls,
        )

    def update(self, registry: dict[str, PluginRecord]) -> UpdateSummary:
        """Update every selected plugin in the registry.

        Args:
            registry: Result of scanning the plugins directory

        Returns:
            UpdateSummary with one result per selected plugin
        """
        summary = UpdateSummary(build=self.build)
        if self.config.plugins_dir is not None and not self.config.dry_run:
            remove_stale_scratch(self.config.plugins_dir)

        candidates = select_plugins(
            registry,
            self.build_number,
            only=self.config.only,
            only_incompatible=self.config.only_incompatible,
        )
        if not candidates:
            logger.info("No matching plugins to update")
            return summary

        logger.info("Checking %d plugin(s) for build %s", len(candidates), self.build)
        for record in candidates:
            summary.results.append(self._update_one(record))

        logger.info(
            "Update complete: %d succeeded, %d failed",
            summary.success_count,
            summary.failure_count,
        )
        return summary

    def _update_one(self, record: PluginRecord) -> UpdateResult:
        result = UpdateResult(
            plugin_id=record.id,
            current_version=record.version,
            success=False,
            dry_run=self.config.dry_run,
        )
        try:
            deadline = Deadline(self.config.plugin_deadline, label=record.id)
            artifact = self.resolve(record, deadline)
            result.url = artifact.url
            result.target_version = artifact.version

            if self.config.dry_run:
                result.success = True
                result.message = f"would download and install into {record.path}"
                return result

            result.outcome = self.install(record, artifact, deadline)
            result.success = True
            if result.outcome.is_compatible:
                result.message = "installed"
            else:
                result.message = "installed, but still incompatible"
        except Exception as e:
            logger.error("[%s] failed: %s", record.id, e)
            logger.debug("Update of %s failed", record.id, exc_info=True)
            result.message = str(e)
        return result

    def resolve(self, record: PluginRecord, deadline: Deadline | None = None) -> ResolvedArtifact:
        """Resolve and host-rewrite the artifact URL for one plugin."""
        timeout = deadline.remaining() if deadline else None
        artifact = self.resolver.resolve(record.id, self.build, timeout=timeout)
        url = rewrite_host(artifact.url, self.config.downloads_host)
        if url != artifact.url:
            artifact = ResolvedArtifact(
                artifact.plugin_id, url, artifact.strategy, artifact.version
            )
        return artifact

    def install(
        self,
        record: PluginRecord,
        artifact: ResolvedArtifact,
        deadline: Deadline | None = None,
    ) -> InstallOutcome:
        """Download an artifact and install it over the plugin's directory."""
        with tempfile.NamedTemporaryFile(
            prefix=f"ideup-{safe_filename(record.id)}-", suffix=".zip", delete=False
        ) as tmp:
            archive = Path(tmp.name)

        try:
            download(
                self.transport,
                artifact.url,
                archive,
                max_redirects=self.config.max_redirects,
                deadline=deadline,
            )
            installed: InstallResult = extract_and_install(archive, record.path, self.extractor)
        finally:
            remove_file(archive)

        post = read_plugin_dir(installed.path)
        compatible = post is not None and post.is_compatible(self.build_number)
        return InstallOutcome(
            record=post, is_compatible=compatible, backup_path=installed.backup_path
        )


def run_update(
    config: UpdaterConfig,
    build: str,
    transport: Transport | None = None,
    extractor: Extractor | None = None,
) -> UpdateSummary:
    """Scan ``config.plugins_dir`` and update the selected plugins."""
    updater = PluginUpdater(config, build, transport=transport, extractor=extractor)
    registry = load_registry(config.plugins_dir)
    return updater.update(registry)
