"""Plugin download and installation.

Installing a plugin replaces its directory in two renames: the current
directory is moved aside to a timestamped backup, then the freshly extracted
content is moved into place. Each rename is atomic, the pair is not. A crash
between the two leaves the plugin directory missing with the backup (and the
hidden scratch directory) still on disk. The next scan reports such a plugin
from its backup, so re-running the updater reinstalls it; the next update run
also removes the stale scratch directory. Renaming the backup back restores
the old version by hand.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urljoin

from ideup.config.schemas import DEFAULT_MAX_REDIRECTS
from ideup.errors import IdeupError
from ideup.marketplace.transport import Deadline, Transport, TransportError
from ideup.utils.filesystem import (
    ExtractionError,
    Extractor,
    ZipExtractor,
    find_content_root,
    remove_directory,
    unique_backup_path,
)

logger = logging.getLogger(__name__)

SCRATCH_PREFIX = ".ideup-"


class InstallError(IdeupError):
    """Error moving plugin files into place."""

    def __init__(self, message: str, path: Path | None = None, plugin_id: str | None = None):
        self.path = path
        super().__init__(message, plugin_id)


@dataclass(frozen=True)
class InstallResult:
    """Where an installed plugin ended up."""

    path: Path
    backup_path: Path | None = None


def download(
    transport: Transport,
    url: str,
    dest_file: Path,
    max_redirects: int = DEFAULT_MAX_REDIRECTS,
    deadline: Deadline | None = None,
) -> Path:
    """Download a URL to a local file, following redirects.

    Args:
        transport: HTTP transport
        url: URL to download
        dest_file: File to write the body to
        max_redirects: How many redirects may be followed
        deadline: Optional wall-clock budget for the whole transfer

    Returns:
        Path to the downloaded file

    Raises:
        TransportError: On a non-2xx/3xx status, too many redirects, a
            missing Location header, or a network failure
    """
    current = url
    redirects = 0

    while True:
        timeout = deadline.remaining() if deadline else None
        with transport.get(current, timeout=timeout) as response:
            if response.is_redirect:
                location = response.header("Location")
                if not location:
                    raise TransportError(
                        f"HTTP {response.status} without Location header for {current}",
                        url=current,
                        status_code=response.status,
                    )
                if redirects >= max_redirects:
                    raise TransportError(
                        f"Too many redirects (>{max_redirects}) downloading {url}",
                        url=current,
                        status_code=response.status,
                    )
                redirects += 1
                current = urljoin(current, location)
                logger.debug("Following redirect %d to %s", redirects, current)
                continue

            if not response.is_success:
                raise TransportError(
                    f"HTTP {response.status} {response.reason} for {current}",
                    url=current,
                    status_code=response.status,
                )

            dest_file.parent.mkdir(parents=True, exist_ok=True)
            size = 0
            try:
                with open(dest_file, "wb") as f:
                    for chunk in response.iter_chunks():
                        f.write(chunk)
                        size += len(chunk)
                        if deadline:
                            deadline.check()
            except OSError as e:
                raise TransportError(f"Download of {current} failed: {e}", url=current) from e

            logger.info("Downloaded %d bytes from %s", size, current)
            return dest_file


def extract_and_install(
    archive: Path,
    dest_dir: Path,
    extractor: Extractor | None = None,
    timestamp: int | None = None,
) -> InstallResult:
    """Extract a plugin archive and install it at ``dest_dir``.

    A single top-level directory inside the archive is unwrapped. An existing
    ``dest_dir`` is renamed to ``<dest_dir>.bak.<timestamp>`` first.

    Args:
        archive: Plugin zip to install
        dest_dir: Final plugin directory
        extractor: Archive extractor (default: zipfile)
        timestamp: Backup timestamp (default: now)

    Returns:
        InstallResult with the install path and backup path, if any

    Raises:
        ExtractionError: If the archive can't be extracted
        InstallError: If the directories can't be moved
    """
    extractor = extractor or ZipExtractor()
    parent = dest_dir.parent
    try:
        parent.mkdir(parents=True, exist_ok=True)
        # Scratch lives next to the destination so the final move is a rename
        scratch = Path(tempfile.mkdtemp(prefix=SCRATCH_PREFIX, dir=parent))
    except OSError as e:
        raise InstallError(f"Cannot create scratch directory in {parent}: {e}", parent) from e

    try:
        extractor.extract(archive, scratch)
        root = find_content_root(scratch)
        if not any(root.iterdir()):
            raise ExtractionError(f"Archive is empty: {archive}", archive)
        logger.debug("Installing content root %s", root)

        backup: Path | None = None
        if dest_dir.exists():
            backup = unique_backup_path(dest_dir, timestamp)
            try:
                os.rename(dest_dir, backup)
            except OSError as e:
                raise InstallError(f"Cannot back up {dest_dir}: {e}", dest_dir) from e
            logger.info("Backed up %s -> %s", dest_dir, backup)

        try:
            os.rename(root, dest_dir)
        except OSError as e:
            if backup is not None:
                _restore_backup(backup, dest_dir)
            raise InstallError(f"Cannot move new files into {dest_dir}: {e}", dest_dir) from e

        logger.info("Installed %s", dest_dir)
        return InstallResult(path=dest_dir, backup_path=backup)
    finally:
        remove_directory(scratch)


def remove_stale_scratch(plugins_dir: Path) -> list[Path]:
    """Remove scratch directories left behind by interrupted installs.

    Args:
        plugins_dir: Directory the installs extract next to

    Returns:
        The directories that were removed
    """
    removed = []
    for entry in sorted(plugins_dir.glob(f"{SCRATCH_PREFIX}*")):
        if not entry.is_dir():
            continue
        try:
            remove_directory(entry)
        except OSError as e:
            logger.warning("Cannot remove leftover scratch directory %s: %s", entry, e)
            continue
        logger.info("Removed leftover scratch directory %s", entry)
        removed.append(entry)
    return removed


def _restore_backup(backup: Path, dest_dir: Path) -> None:
    try:
        os.rename(backup, dest_dir)
        logger.warning("Restored %s from backup", dest_dir)
    except OSError as e:
        logger.error("Could not restore %s from %s: %s", dest_dir, backup, e)
