"""Image materialization.

This module handles:
- Region serializers (boot FAT16, root squashfs)
- Boot sector construction from the written boot region
- Output strategies (device, image file, region files, transient files)
- Block device validation and partition node handling
- Transfer sources for reading written regions back

The pack entry point lives in rpi_packer.image.service.
"""

from rpi_packer.image.bootsector import (
    BootSector,
    MissingBootFileError,
    boot_lba,
    build_boot_sector,
    locate_boot_files,
    write_boot_sector,
)
from rpi_packer.image.errors import (
    DeviceIOError,
    DeviceNodeTimeoutError,
    FileIOError,
    PackIOError,
    RegionOverflowError,
)
from rpi_packer.image.output import (
    DeviceOutput,
    FileOutput,
    MaterializedImage,
    OutputSelectionError,
    PartitionFilesOutput,
    StorageTarget,
    TransientOutput,
    select_output,
)
from rpi_packer.image.regions import ManifestRegions, copy_stream
from rpi_packer.image.sources import (
    DevicePartitionSource,
    FileWindowSource,
    NamedFileSource,
    TransferSource,
    TransientFileSource,
)
from rpi_packer.image.windowed import WindowedReader

__all__ = [
    "BootSector",
    "DeviceIOError",
    "DeviceNodeTimeoutError",
    "DeviceOutput",
    "DevicePartitionSource",
    "FileIOError",
    "FileOutput",
    "FileWindowSource",
    "ManifestRegions",
    "MaterializedImage",
    "MissingBootFileError",
    "NamedFileSource",
    "OutputSelectionError",
    "PackIOError",
    "PartitionFilesOutput",
    "RegionOverflowError",
    "StorageTarget",
    "TransferSource",
    "TransientFileSource",
    "TransientOutput",
    "WindowedReader",
    "boot_lba",
    "build_boot_sector",
    "copy_stream",
    "locate_boot_files",
    "select_output",
    "write_boot_sector",
]
