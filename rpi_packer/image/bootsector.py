"""Boot sector construction.

The boot loader reads the kernel and command line by absolute sector, so the
boot sector records where both files ended up inside the boot region:

    0x1B0  kernel LBA   (u32le)
    0x1B4  cmdline LBA  (u32le)
    0x1BE  partition table

The files are located by reading the freshly written FAT region back, which
is why the boot sector is always written after the boot region.
"""

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, BinaryIO

from rpi_packer.fs.fat import FatError, FatReader
from rpi_packer.fs.mbr import SECTOR_SIZE, PartitionEntry, encode_mbr
from rpi_packer.image.windowed import WindowedReader
from rpi_packer.layout import BOOT_START_SECTOR, RegionLayout
from rpi_packer.manifest import CMDLINE_PATH, KERNEL_PATH

logger = logging.getLogger(__name__)

# Anything with .extents(path) -> (offset, size) over a boot region stream
ExtentLookup = Callable[[Any], Any]


class MissingBootFileError(Exception):
    """A file the boot sector must point to is not in the boot region."""

    def __init__(self, path: str, reason: str | None = None) -> None:
        message = f"{path} not found in boot region"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.message = message
        self.error_code = "MISSING_BOOT_FILE"
        self.path = path


def boot_lba(offset: int, start_sector: int = BOOT_START_SECTOR) -> int:
    """Convert a byte offset inside the boot region to an absolute sector."""
    return offset // SECTOR_SIZE + start_sector


def locate_boot_files(
    boot_stream: BinaryIO, lookup: ExtentLookup = FatReader
) -> tuple[int, int]:
    """Find the kernel and command line in a boot region.

    Returns:
        Tuple of (kernel offset, cmdline offset), in bytes from the start of
        the boot region.

    Raises:
        MissingBootFileError: Either file cannot be located.
    """
    try:
        reader = lookup(boot_stream)
    except (FatError, OSError) as e:
        raise MissingBootFileError(KERNEL_PATH, str(e)) from e

    offsets = []
    for path in (KERNEL_PATH, CMDLINE_PATH):
        try:
            offset, _size = reader.extents(path)
        except (FatError, OSError) as e:
            raise MissingBootFileError(path, str(e)) from e
        offsets.append(offset)
    return offsets[0], offsets[1]


@dataclass(frozen=True)
class BootSector:
    """The 512-byte record written to sector 0 of the medium."""

    kernel_lba: int
    cmdline_lba: int
    partitions: tuple[PartitionEntry, ...]

    def encode(self) -> bytes:
        return encode_mbr(
            list(self.partitions),
            kernel_lba=self.kernel_lba,
            cmdline_lba=self.cmdline_lba,
        )


def build_boot_sector(
    boot_stream: BinaryIO,
    layout: RegionLayout,
    medium_size: int | None = None,
    lookup: ExtentLookup = FatReader,
) -> BootSector:
    """Build the boot sector for a written boot region.

    Args:
        boot_stream: Stream whose position 0 is the first byte of the boot region.
        layout: Region layout of the medium.
        medium_size: Size of the medium (sizes the persistent partition).
        lookup: Extent lookup factory.
    """
    kernel_offset, cmdline_offset = locate_boot_files(boot_stream, lookup)
    sector = BootSector(
        kernel_lba=boot_lba(kernel_offset, layout.boot_start_sector),
        cmdline_lba=boot_lba(cmdline_offset, layout.boot_start_sector),
        partitions=tuple(layout.partitions(medium_size)),
    )
    logger.debug(
        "Boot sector: kernel at LBA %d, cmdline at LBA %d",
        sector.kernel_lba,
        sector.cmdline_lba,
    )
    return sector


def write_boot_sector(
    medium: BinaryIO,
    layout: RegionLayout,
    medium_size: int | None = None,
    lookup: ExtentLookup = FatReader,
) -> BootSector:
    """Write the boot sector of a medium whose boot region is already written.

    The medium must be opened for reading and writing.
    """
    window = WindowedReader(medium, layout.boot_offset)
    sector = build_boot_sector(window, layout, medium_size, lookup)
    medium.seek(0, os.SEEK_SET)
    medium.write(sector.encode())
    medium.flush()
    return sector


__all__ = [
    "BootSector",
    "MissingBootFileError",
    "boot_lba",
    "build_boot_sector",
    "locate_boot_files",
    "write_boot_sector",
]
