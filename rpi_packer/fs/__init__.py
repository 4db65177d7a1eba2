"""File system and partition table codecs.

This module handles the byte-level formats of the image:
- MBR partition table and boot sector (mbr)
- FAT16 boot region writer and FAT extent lookup (fat)
- squashfs root region via mksquashfs (squashfs)
"""

from rpi_packer.fs.fat import (
    FatCapacityError,
    FatError,
    FatFormatError,
    FatPathNotFoundError,
    FatReader,
    FatWriter,
)
from rpi_packer.fs.mbr import MBRError, PartitionEntry, decode_mbr, encode_mbr
from rpi_packer.fs.squashfs import SquashfsError, make_squashfs

__all__ = [
    "FatCapacityError",
    "FatError",
    "FatFormatError",
    "FatPathNotFoundError",
    "FatReader",
    "FatWriter",
    "MBRError",
    "PartitionEntry",
    "SquashfsError",
    "decode_mbr",
    "encode_mbr",
    "make_squashfs",
]
