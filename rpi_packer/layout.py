"""Geometry planning for the SD card image.

The boot ROM expects the FAT boot partition at sector 8192 (4 MiB). It is
followed by two equally sized root slots used for A/B updates and a
persistent data partition filling the remainder of the medium:

    0        4 MiB      104 MiB      604 MiB      1104 MiB        end
    | MBR    | boot     | root A     | root B     | perm          |

All offsets are fixed; only the size of the persistent partition depends on
the medium.
"""

import logging
from dataclasses import dataclass

from rpi_packer.fs.mbr import (
    PARTITION_TYPE_FAT16_LBA,
    PARTITION_TYPE_LINUX,
    SECTOR_SIZE,
    PartitionEntry,
)

logger = logging.getLogger(__name__)

MiB = 1024 * 1024

BOOT_START_SECTOR = 8192
BOOT_OFFSET = BOOT_START_SECTOR * SECTOR_SIZE
BOOT_CAPACITY = 100 * MiB
ROOT_OFFSET = BOOT_OFFSET + BOOT_CAPACITY
ROOT_SLOT_SIZE = 500 * MiB
ROOT_SLOTS = 2

# Boot region, both root slots and the leading alignment gap.
MIN_TARGET_SIZE = BOOT_OFFSET + BOOT_CAPACITY + ROOT_SLOTS * ROOT_SLOT_SIZE


class InvalidGeometryError(Exception):
    """Requested medium size cannot hold the image layout."""

    def __init__(self, message: str, total_size: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = "INVALID_GEOMETRY"
        self.total_size = total_size


@dataclass(frozen=True)
class RegionLayout:
    """Absolute placement of the boot and root regions.

    Attributes:
        boot_offset: Byte offset of the boot region.
        boot_capacity: Bytes reserved for the boot region.
        root_offset: Byte offset of root slot A.
        root_slot_size: Bytes reserved for each root slot.
        total_size: Requested medium size (None when writing to a device).
    """

    boot_offset: int = BOOT_OFFSET
    boot_capacity: int = BOOT_CAPACITY
    root_offset: int = ROOT_OFFSET
    root_slot_size: int = ROOT_SLOT_SIZE
    total_size: int | None = None

    @property
    def boot_start_sector(self) -> int:
        return self.boot_offset // SECTOR_SIZE

    @property
    def root_start_sector(self) -> int:
        return self.root_offset // SECTOR_SIZE

    @property
    def root_b_offset(self) -> int:
        return self.root_offset + self.root_slot_size

    @property
    def perm_offset(self) -> int:
        return self.root_offset + ROOT_SLOTS * self.root_slot_size

    def partitions(self, medium_size: int | None = None) -> list[PartitionEntry]:
        """Return the partition table entries for a medium.

        The persistent partition takes the space after the second root slot
        and is left out when there is none.

        Args:
            medium_size: Size of the medium in bytes; defaults to total_size.

        Returns:
            Partition entries in table order.
        """
        if medium_size is None:
            medium_size = self.total_size

        slot_sectors = self.root_slot_size // SECTOR_SIZE
        entries = [
            PartitionEntry(
                type_id=PARTITION_TYPE_FAT16_LBA,
                start_lba=self.boot_start_sector,
                sector_count=self.boot_capacity // SECTOR_SIZE,
                bootable=True,
            ),
            PartitionEntry(
                type_id=PARTITION_TYPE_LINUX,
                start_lba=self.root_start_sector,
                sector_count=slot_sectors,
            ),
            PartitionEntry(
                type_id=PARTITION_TYPE_LINUX,
                start_lba=self.root_b_offset // SECTOR_SIZE,
                sector_count=slot_sectors,
            ),
        ]

        if medium_size is not None:
            perm_sectors = medium_size // SECTOR_SIZE - self.perm_offset // SECTOR_SIZE
            if perm_sectors > 0:
                entries.append(
                    PartitionEntry(
                        type_id=PARTITION_TYPE_LINUX,
                        start_lba=self.perm_offset // SECTOR_SIZE,
                        sector_count=perm_sectors,
                    )
                )

        return entries


def validate_total_size(total_size: int) -> None:
    """Check that a requested medium size can hold the layout.

    Raises:
        InvalidGeometryError: Size is not a positive multiple of the sector
            size or is below MIN_TARGET_SIZE.
    """
    if total_size <= 0 or total_size % SECTOR_SIZE != 0:
        raise InvalidGeometryError(
            f"target storage size must be a positive multiple of {SECTOR_SIZE} "
            f"(sector size), got {total_size}",
            total_size=total_size,
        )
    if total_size < MIN_TARGET_SIZE:
        raise InvalidGeometryError(
            f"target storage size must be at least {MIN_TARGET_SIZE} bytes "
            f"(boot + {ROOT_SLOTS} root file systems), got {total_size}",
            total_size=total_size,
        )


def plan_layout(total_size: int | None = None) -> RegionLayout:
    """Compute the region layout for a medium.

    Args:
        total_size: Size of the image file in bytes, or None when writing to
            a block device (its size is queried later and not checked here).

    Returns:
        The immutable RegionLayout.

    Raises:
        InvalidGeometryError: total_size cannot hold the layout.
    """
    if total_size is not None:
        validate_total_size(total_size)

    layout = RegionLayout(total_size=total_size)
    logger.debug(
        "Planned layout: boot at %d (+%d), root at %d, total=%s",
        layout.boot_offset,
        layout.boot_capacity,
        layout.root_offset,
        total_size,
    )
    return layout


__all__ = [
    "BOOT_CAPACITY",
    "BOOT_OFFSET",
    "BOOT_START_SECTOR",
    "MIN_TARGET_SIZE",
    "MiB",
    "ROOT_OFFSET",
    "ROOT_SLOT_SIZE",
    "InvalidGeometryError",
    "RegionLayout",
    "plan_layout",
    "validate_total_size",
]
