"""Staging a manifest into a host directory.

mksquashfs consumes a directory, so the root manifest is materialized into a
temporary staging tree first.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from rpi_packer.manifest.builder import ManifestError
from rpi_packer.manifest.models import (
    DirectoryEntry,
    HostFileEntry,
    LiteralFileEntry,
    Manifest,
    SymlinkEntry,
)

logger = logging.getLogger(__name__)


def stage_manifest(manifest: Manifest, dest_dir: Path) -> int:
    """Write every manifest entry below dest_dir.

    Returns:
        Number of entries staged.

    Raises:
        ManifestError: An entry cannot be written.
    """
    count = 0
    mtime = manifest.timestamp.timestamp()
    dest_dir.mkdir(parents=True, exist_ok=True)
    directories: list[tuple[Path, int]] = []

    try:
        for path, entry in manifest.walk():
            target = dest_dir / path.lstrip("/")
            if isinstance(entry, DirectoryEntry):
                target.mkdir(exist_ok=True)
                directories.append((target, entry.mode))
            elif isinstance(entry, HostFileEntry):
                shutil.copy2(entry.source, target)
                if entry.mode is not None:
                    target.chmod(entry.mode)
            elif isinstance(entry, LiteralFileEntry):
                target.write_bytes(entry.content)
                target.chmod(entry.mode)
                os.utime(target, (mtime, mtime))
            elif isinstance(entry, SymlinkEntry):
                target.symlink_to(entry.target)
            count += 1
    except OSError as e:
        raise ManifestError(f"Failed to stage manifest into {dest_dir}: {e}") from e

    # Apply directory modes last so read-only directories can still be filled
    for directory, mode in directories:
        directory.chmod(mode)

    logger.debug("Staged %d entries into %s", count, dest_dir)
    return count


__all__ = ["stage_manifest"]
