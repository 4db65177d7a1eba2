"""Region serializers.

A serializer writes one region's bytes to a stream and returns the number of
bytes written. Output strategies only depend on that contract:

    class RegionSerializer(Protocol):
        def write_boot(self, stream) -> int: ...
        def write_root(self, stream) -> int: ...

ManifestRegions is the production serializer: the boot region is a FAT16
image built in-process, the root region a squashfs image built by mksquashfs.
"""

import logging
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Protocol

from rpi_packer.fs.fat import FatError, FatWriter
from rpi_packer.fs.squashfs import make_squashfs
from rpi_packer.layout import BOOT_CAPACITY, BOOT_START_SECTOR
from rpi_packer.manifest import (
    DirectoryEntry,
    HostFileEntry,
    LiteralFileEntry,
    Manifest,
    SymlinkEntry,
    stage_manifest,
)

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_SIZE = 4 * 1024 * 1024
_PROGRESS_STEP = 64 * 1024 * 1024


class RegionSerializer(Protocol):
    def write_boot(self, stream: BinaryIO) -> int: ...

    def write_root(self, stream: BinaryIO) -> int: ...


def copy_stream(
    source: BinaryIO,
    dest: BinaryIO,
    length: int | None = None,
    block_size: int = DEFAULT_BLOCK_SIZE,
) -> int:
    """Copy from source to dest, stopping after length bytes if given.

    Returns:
        Number of bytes copied.
    """
    copied = 0
    while length is None or copied < length:
        want = block_size if length is None else min(block_size, length - copied)
        chunk = source.read(want)
        if not chunk:
            break
        dest.write(chunk)
        copied += len(chunk)

        if copied % _PROGRESS_STEP < len(chunk):
            if length:
                logger.debug(
                    "Copy progress: %d / %d bytes (%.1f%%)",
                    copied,
                    length,
                    copied / length * 100,
                )
            else:
                logger.debug("Copy progress: %d bytes", copied)

    return copied


def _utc(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, timezone.utc)


class ManifestRegions:
    """Serialize the boot and root regions from manifests.

    Args:
        boot: Boot manifest (FAT16 region).
        root: Root manifest (squashfs region).
        mksquashfs: mksquashfs executable.
        tmp_dir: Directory for the staging tree and squashfs output.
        timeout: Timeout for mksquashfs in seconds.
    """

    def __init__(
        self,
        boot: Manifest,
        root: Manifest,
        *,
        mksquashfs: str = "mksquashfs",
        tmp_dir: Path | None = None,
        timeout: float | None = None,
    ) -> None:
        self.boot = boot
        self.root = root
        self.mksquashfs = mksquashfs
        self.tmp_dir = tmp_dir
        self.timeout = timeout

    def fat_writer(self) -> FatWriter:
        """Return a FAT writer holding every boot manifest entry."""
        stamp = self.boot.timestamp
        writer = FatWriter(
            hidden_sectors=BOOT_START_SECTOR,
            max_size=BOOT_CAPACITY,
            volume_id=int(stamp.timestamp()),
        )
        for path, entry in self.boot.walk():
            if isinstance(entry, DirectoryEntry):
                writer.mkdir(path, stamp)
            elif isinstance(entry, HostFileEntry):
                writer.add_file(path, entry.source, _utc(entry.source.stat().st_mtime))
            elif isinstance(entry, LiteralFileEntry):
                writer.add_file(path, entry.content, stamp)
            elif isinstance(entry, SymlinkEntry):
                raise FatError(f"{path}: symbolic links cannot be stored on FAT")
        return writer

    def write_boot(self, stream: BinaryIO) -> int:
        size = self.fat_writer().write_to(stream)
        logger.info("Boot region: %d bytes", size)
        return size

    def write_root(self, stream: BinaryIO) -> int:
        with tempfile.TemporaryDirectory(prefix="rpi-packer-", dir=self.tmp_dir) as tmp:
            staging = Path(tmp) / "root"
            image = Path(tmp) / "root.squashfs"
            stage_manifest(self.root, staging)
            make_squashfs(
                staging,
                image,
                mksquashfs=self.mksquashfs,
                timestamp=int(self.root.timestamp.timestamp()),
                timeout=self.timeout,
            )
            size = image.stat().st_size
            with open(image, "rb") as src:
                copied = copy_stream(src, stream, size)
        logger.info("Root region: %d bytes", copied)
        return copied


__all__ = [
    "DEFAULT_BLOCK_SIZE",
    "ManifestRegions",
    "RegionSerializer",
    "copy_stream",
]
