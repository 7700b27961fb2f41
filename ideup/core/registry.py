"""Scanner for locally installed plugins.

A plugin lives in a direct subdirectory of the plugins directory. Its
``META-INF/plugin.xml`` is either unpacked on disk or packed inside one of the
jars under ``lib/``.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
import zipfile
from dataclasses import dataclass, replace
from pathlib import Path

from ideup.errors import IdeupError
from ideup.utils.build import BuildNumber, CompatibilityRange
from ideup.utils.filesystem import backup_origin, is_backup_name

logger = logging.getLogger(__name__)

MANIFEST_PATH = "META-INF/plugin.xml"
ARCHIVE_DIR = "lib"
ARCHIVE_GLOB = "*.jar"

# Both spellings have been used for the idea-version attributes over the years
SINCE_ATTRIBUTES = ("since-build", "sinceBuild")
UNTIL_ATTRIBUTES = ("until-build", "untilBuild")


class ManifestParseError(IdeupError):
    """A plugin manifest could not be parsed."""


@dataclass(frozen=True)
class PluginManifest:
    """The parts of plugin.xml the updater cares about."""

    id: str
    version: str | None
    compatibility: CompatibilityRange


@dataclass(frozen=True)
class PluginRecord:
    """One scan's snapshot of an installed plugin.

    ``backup_path`` is set when ``path`` itself is missing and the record was
    read from the backup an interrupted install left behind.
    """

    id: str
    version: str | None
    path: Path
    compatibility: CompatibilityRange
    backup_path: Path | None = None

    @property
    def folder(self) -> str:
        return self.path.name

    def is_compatible(self, build: BuildNumber | str | None) -> bool:
        return self.compatibility.contains(build)


def _element_text(root: ET.Element, tag: str) -> str | None:
    element = next(root.iter(tag), None)
    if element is None or element.text is None:
        return None
    return element.text.strip() or None


def _first_attribute(element: ET.Element | None, names: tuple[str, ...]) -> str | None:
    if element is None:
        return None
    for name in names:
        value = element.get(name)
        if value:
            return value.strip()
    return None


def parse_manifest(xml_text: str | bytes) -> PluginManifest:
    """Parse plugin.xml content.

    Args:
        xml_text: Raw manifest content

    Returns:
        Parsed PluginManifest

    Raises:
        ManifestParseError: If the markup is malformed or has no id
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ManifestParseError(f"Malformed plugin.xml: {e}") from e

    # Legacy manifests only carry a name
    plugin_id = _element_text(root, "id") or _element_text(root, "name")
    if not plugin_id:
        raise ManifestParseError("plugin.xml has no id or name")

    idea_version = next(root.iter("idea-version"), None)
    return PluginManifest(
        id=plugin_id,
        version=_element_text(root, "version"),
        compatibility=CompatibilityRange.from_bounds(
            _first_attribute(idea_version, SINCE_ATTRIBUTES),
            _first_attribute(idea_version, UNTIL_ATTRIBUTES),
        ),
    )


def try_parse_manifest(xml_text: str | bytes | None) -> PluginManifest | None:
    """Parse plugin.xml content, returning None if it isn't usable."""
    if not xml_text:
        return None
    try:
        return parse_manifest(xml_text)
    except ManifestParseError as e:
        logger.debug("Ignoring manifest: %s", e)
        return None


def read_manifest_from_archive(archive: Path, inner_path: str = MANIFEST_PATH) -> bytes | None:
    """Read a file out of a jar/zip archive.

    Returns:
        The file's bytes, or None if the archive or entry can't be read
    """
    try:
        with zipfile.ZipFile(archive) as zf:
            return zf.read(inner_path)
    except KeyError:
        return None
    except (zipfile.BadZipFile, OSError) as e:
        logger.debug("Cannot read %s from %s: %s", inner_path, archive, e)
        return None


def find_manifest(plugin_dir: Path) -> PluginManifest | None:
    """Locate and parse the manifest of one plugin directory.

    Checks the unpacked manifest first, then each jar under ``lib/`` in
    sorted order until one yields a manifest with an id.
    """
    unpacked = plugin_dir / MANIFEST_PATH
    if unpacked.is_file():
        try:
            manifest = try_parse_manifest(unpacked.read_bytes())
        except OSError as e:
            logger.debug("Cannot read %s: %s", unpacked, e)
            manifest = None
        if manifest:
            return manifest

    archive_dir = plugin_dir / ARCHIVE_DIR
    if not archive_dir.is_dir():
        return None

    for archive in sorted(archive_dir.glob(ARCHIVE_GLOB)):
        manifest = try_parse_manifest(read_manifest_from_archive(archive))
        if manifest:
            logger.debug("Found manifest for %s in %s", manifest.id, archive.name)
            return manifest

    return None


def read_plugin_dir(plugin_dir: Path) -> PluginRecord | None:
    """Build a PluginRecord for one directory, or None if it has no manifest."""
    manifest = find_manifest(plugin_dir)
    if manifest is None:
        return None
    return PluginRecord(
        id=manifest.id,
        version=manifest.version,
        path=plugin_dir,
        compatibility=manifest.compatibility,
    )


def find_orphaned_backups(entries: list[Path]) -> dict[Path, Path]:
    """Find backups whose live plugin folder no longer exists.

    That happens when an install stops between moving the old folder aside
    and moving the new one in. Only the newest backup of each folder counts.

    Args:
        entries: Sorted entries of a plugins directory

    Returns:
        Mapping of backup path to the missing folder path
    """
    newest: dict[Path, Path] = {}
    for entry in entries:
        if not is_backup_name(entry.name) or not entry.is_dir():
            continue
        live = entry.with_name(backup_origin(entry.name))
        if not live.exists():
            # Sorted order puts later timestamps last
            newest[live] = entry
    return {backup: live for live, backup in newest.items()}


def scan_plugins(plugins_dir: Path) -> dict[str, PluginRecord]:
    """Scan a plugins directory.

    Args:
        plugins_dir: Directory holding one subdirectory per plugin

    Returns:
        Mapping of plugin id to record, in sorted folder order. Folders
        without a usable manifest are skipped.
    """
    logger.info("Scanning plugins in %s", plugins_dir)
    result: dict[str, PluginRecord] = {}

    entries = sorted(plugins_dir.iterdir(), key=lambda p: p.name)
    orphans = find_orphaned_backups(entries)

    for entry in entries:
        if entry.name.startswith(".") or not entry.is_dir():
            continue
        if is_backup_name(entry.name) and entry not in orphans:
            logger.debug("Skipping backup %s", entry.name)
            continue

        record = read_plugin_dir(entry)
        if record is None:
            logger.debug("Skipping %s: no usable plugin.xml", entry.name)
            continue

        if entry in orphans:
            live = orphans[entry]
            logger.warning(
                "Plugin folder %s is missing but backup %s exists; "
                "updating reinstalls it, or rename the backup back to restore it",
                live.name,
                entry.name,
            )
            record = replace(record, path=live, backup_path=entry)

        previous = result.get(record.id)
        if previous is not None:
            logger.warning(
                "Plugin '%s' found in both %s and %s; using %s",
                record.id,
                previous.folder,
                record.folder,
                record.folder,
            )
        result[record.id] = record

    logger.info("Found %d plugin(s)", len(result))
    return result
