"""Filesystem and archive utilities for ideup."""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
import time
import zipfile
from pathlib import Path
from typing import Literal, Protocol

from ideup.errors import IdeupError

logger = logging.getLogger(__name__)

ExtractorName = Literal["zipfile", "unzip"]

# Entries some archivers add next to the real content
IGNORED_ENTRIES = frozenset({"__MACOSX"})

# Name suffix of the directories that installs move aside
BACKUP_SUFFIX = re.compile(r"\.bak\.\d+(-\d+)?$")


class ExtractionError(IdeupError):
    """Archive extraction is unavailable or failed."""

    def __init__(self, message: str, archive: Path | None = None, plugin_id: str | None = None):
        self.archive = archive
        super().__init__(message, plugin_id)


class Extractor(Protocol):
    """Something that can unpack an archive into a directory."""

    name: str

    def extract(self, archive: Path, dest_dir: Path) -> None: ...


class ZipExtractor:
    """Extract zip archives with the standard library."""

    name = "zipfile"

    def extract(self, archive: Path, dest_dir: Path) -> None:
        logger.debug("Extracting %s to %s", archive, dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        try:
            with zipfile.ZipFile(archive) as zf:
                # Security: prevent path traversal
                for member in zf.namelist():
                    member_path = Path(member)
                    if member_path.is_absolute() or ".." in member_path.parts:
                        raise ExtractionError(f"Unsafe path in archive: {member}", archive)
                zf.extractall(dest_dir)
        except zipfile.BadZipFile as e:
            raise ExtractionError(f"Not a valid zip archive: {archive}", archive) from e
        except OSError as e:
            raise ExtractionError(f"Cannot extract {archive}: {e}", archive) from e


class UnzipCommandExtractor:
    """Extract zip archives with the external ``unzip`` tool."""

    name = "unzip"

    def __init__(self, command: str = "unzip"):
        self.command = command

    def is_available(self) -> bool:
        return shutil.which(self.command) is not None

    def extract(self, archive: Path, dest_dir: Path) -> None:
        if not self.is_available():
            raise ExtractionError(
                f"'{self.command}' not found; install it or use the zipfile extractor",
                archive,
            )
        dest_dir.mkdir(parents=True, exist_ok=True)
        result = subprocess.run(
            [self.command, "-qq", "-o", str(archive), "-d", str(dest_dir)],
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            raise ExtractionError(
                f"{self.command} failed for {archive} (exit {result.returncode}): "
                f"{result.stderr.strip()}",
                archive,
            )


def get_extractor(name: ExtractorName = "zipfile") -> Extractor:
    """Get an extractor by name.

    Raises:
        ExtractionError: If the name is unknown
    """
    if name == "zipfile":
        return ZipExtractor()
    if name == "unzip":
        return UnzipCommandExtractor()
    raise ExtractionError(f"Unknown extractor: {name}")


def find_content_root(extracted_dir: Path) -> Path:
    """Find the directory that holds the extracted content.

    If there's a single top-level directory, return its path; otherwise the
    extraction directory itself is the root.
    """
    contents = [p for p in extracted_dir.iterdir() if p.name not in IGNORED_ENTRIES]
    if len(contents) == 1 and contents[0].is_dir():
        return contents[0]
    return extracted_dir


def unique_backup_path(path: Path, timestamp: int | None = None) -> Path:
    """Get an unused ``<path>.bak.<timestamp>`` sibling path.

    Args:
        path: Path that is about to be moved aside
        timestamp: Unix timestamp to use (default: now)

    Returns:
        A path that does not exist yet
    """
    if timestamp is None:
        timestamp = int(time.time())
    candidate = path.with_name(f"{path.name}.bak.{timestamp}")
    counter = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.name}.bak.{timestamp}-{counter}")
        counter += 1
    return candidate


def is_backup_name(name: str) -> bool:
    """Check if a directory name looks like one made by unique_backup_path."""
    return BACKUP_SUFFIX.search(name) is not None


def backup_origin(name: str) -> str:
    """Get the folder name a backup was made from (``foo.bak.17-1`` -> ``foo``)."""
    return BACKUP_SUFFIX.sub("", name)


def remove_directory(path: Path) -> bool:
    """Remove a directory and its contents.

    Args:
        path: Directory path to remove

    Returns:
        True if the directory was removed, False if it didn't exist
    """
    if not path.exists():
        return False
    shutil.rmtree(path)
    return True


def remove_file(path: Path) -> bool:
    """Remove a file.

    Args:
        path: File path to remove

    Returns:
        True if the file was removed, False if it didn't exist
    """
    if not path.exists():
        return False
    path.unlink()
    return True


def safe_filename(value: str) -> str:
    """Replace characters that are awkward in file names."""
    return "".join(c if c.isalnum() or c in "._-" else "_" for c in value)
