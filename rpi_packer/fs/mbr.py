"""MBR partition table and boot sector codec.

The first sector of the medium is a classic MBR whose bootstrap area carries
two pointers instead of boot code:

    0x000-0x1AF  zeroed bootstrap area
    0x1B0        kernel image LBA (u32le)
    0x1B4        kernel command line LBA (u32le)
    0x1B8        disk signature (u32le)
    0x1BC        reserved (2 bytes)
    0x1BE        four 16-byte partition entries
    0x1FE        boot signature 55 AA

Partition entries use LBA addressing only; the CHS fields carry the usual
"beyond CHS range" marker.
"""

import struct
from dataclasses import dataclass

SECTOR_SIZE = 512

KERNEL_LBA_OFFSET = 0x1B0
CMDLINE_LBA_OFFSET = 0x1B4
DISK_SIGNATURE_OFFSET = 0x1B8
PARTITION_TABLE_OFFSET = 0x1BE
PARTITION_ENTRY_SIZE = 16
MAX_PARTITIONS = 4
BOOT_SIGNATURE_OFFSET = 0x1FE
BOOT_SIGNATURE = b"\x55\xaa"

# Partition type bytes
PARTITION_TYPE_FAT16_LBA = 0x0E
PARTITION_TYPE_LINUX = 0x83

_CHS_LBA_MARKER = b"\xfe\xff\xff"
_ENTRY_STRUCT = struct.Struct("<B3sB3sII")


class MBRError(Exception):
    """Raised when a boot sector cannot be encoded or decoded."""

    def __init__(self, message: str, code: str = "mbr_error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


@dataclass(frozen=True)
class PartitionEntry:
    """A primary partition described by LBA start and length.

    Attributes:
        type_id: Partition type byte (e.g. 0x0E for FAT16 LBA).
        start_lba: First sector of the partition.
        sector_count: Number of sectors.
        bootable: Whether the active flag (0x80) is set.
    """

    type_id: int
    start_lba: int
    sector_count: int
    bootable: bool = False

    def encode(self) -> bytes:
        """Encode this entry into its 16-byte on-disk form."""
        if not 0 <= self.start_lba <= 0xFFFFFFFF:
            raise MBRError(f"start LBA out of range: {self.start_lba}")
        if not 0 <= self.sector_count <= 0xFFFFFFFF:
            raise MBRError(f"sector count out of range: {self.sector_count}")
        return _ENTRY_STRUCT.pack(
            0x80 if self.bootable else 0x00,
            _CHS_LBA_MARKER,
            self.type_id,
            _CHS_LBA_MARKER,
            self.start_lba,
            self.sector_count,
        )

    @classmethod
    def decode(cls, data: bytes) -> "PartitionEntry | None":
        """Decode a 16-byte entry; returns None for an unused slot."""
        status, _, type_id, _, start_lba, sector_count = _ENTRY_STRUCT.unpack(data)
        if type_id == 0 and sector_count == 0:
            return None
        return cls(
            type_id=type_id,
            start_lba=start_lba,
            sector_count=sector_count,
            bootable=status == 0x80,
        )


def encode_partition_table(partitions: list[PartitionEntry]) -> bytes:
    """Encode up to four partitions into the 64-byte table."""
    if len(partitions) > MAX_PARTITIONS:
        raise MBRError(
            f"an MBR holds at most {MAX_PARTITIONS} primary partitions, "
            f"got {len(partitions)}"
        )
    table = b"".join(p.encode() for p in partitions)
    return table.ljust(PARTITION_ENTRY_SIZE * MAX_PARTITIONS, b"\x00")


def encode_mbr(
    partitions: list[PartitionEntry],
    *,
    kernel_lba: int = 0,
    cmdline_lba: int = 0,
    disk_signature: int = 0,
) -> bytes:
    """Encode a full 512-byte MBR.

    Args:
        partitions: Primary partitions (at most four).
        kernel_lba: Sector of the kernel image (0 for a plain table).
        cmdline_lba: Sector of the kernel command line (0 for a plain table).
        disk_signature: 32-bit disk identifier.

    Returns:
        The 512-byte sector.
    """
    sector = bytearray(SECTOR_SIZE)
    struct.pack_into("<I", sector, KERNEL_LBA_OFFSET, kernel_lba)
    struct.pack_into("<I", sector, CMDLINE_LBA_OFFSET, cmdline_lba)
    struct.pack_into("<I", sector, DISK_SIGNATURE_OFFSET, disk_signature)
    table = encode_partition_table(partitions)
    sector[PARTITION_TABLE_OFFSET : PARTITION_TABLE_OFFSET + len(table)] = table
    sector[BOOT_SIGNATURE_OFFSET:] = BOOT_SIGNATURE
    return bytes(sector)


@dataclass(frozen=True)
class DecodedMBR:
    """Fields read back from an encoded MBR."""

    kernel_lba: int
    cmdline_lba: int
    disk_signature: int
    partitions: list[PartitionEntry]


def decode_mbr(sector: bytes) -> DecodedMBR:
    """Decode a 512-byte MBR produced by encode_mbr.

    Raises:
        MBRError: Sector is short or lacks the boot signature.
    """
    if len(sector) < SECTOR_SIZE:
        raise MBRError(f"boot sector too short: {len(sector)} bytes")
    if sector[BOOT_SIGNATURE_OFFSET:SECTOR_SIZE] != BOOT_SIGNATURE:
        raise MBRError("missing 55 AA boot signature", code="bad_signature")

    (kernel_lba,) = struct.unpack_from("<I", sector, KERNEL_LBA_OFFSET)
    (cmdline_lba,) = struct.unpack_from("<I", sector, CMDLINE_LBA_OFFSET)
    (disk_signature,) = struct.unpack_from("<I", sector, DISK_SIGNATURE_OFFSET)

    partitions: list[PartitionEntry] = []
    for i in range(MAX_PARTITIONS):
        start = PARTITION_TABLE_OFFSET + i * PARTITION_ENTRY_SIZE
        entry = PartitionEntry.decode(sector[start : start + PARTITION_ENTRY_SIZE])
        if entry is not None:
            partitions.append(entry)

    return DecodedMBR(
        kernel_lba=kernel_lba,
        cmdline_lba=cmdline_lba,
        disk_signature=disk_signature,
        partitions=partitions,
    )


__all__ = [
    "BOOT_SIGNATURE",
    "CMDLINE_LBA_OFFSET",
    "KERNEL_LBA_OFFSET",
    "PARTITION_TYPE_FAT16_LBA",
    "PARTITION_TYPE_LINUX",
    "SECTOR_SIZE",
    "DecodedMBR",
    "MBRError",
    "PartitionEntry",
    "decode_mbr",
    "encode_mbr",
    "encode_partition_table",
]
