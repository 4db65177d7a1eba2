"""Tests for image/bootsector.py - boot sector construction."""

import io
from datetime import datetime, timezone

import pytest

from rpi_packer.fs.fat import FatPathNotFoundError, FatWriter
from rpi_packer.fs.mbr import decode_mbr
from rpi_packer.image.bootsector import (
    MissingBootFileError,
    boot_lba,
    build_boot_sector,
    locate_boot_files,
    write_boot_sector,
)
from rpi_packer.layout import BOOT_OFFSET, MiB, plan_layout

MTIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeLookup:
    """Extent lookup returning fixed offsets."""

    def __init__(self, extents):
        self._extents = extents

    def __call__(self, stream):
        return self

    def extents(self, path):
        if path not in self._extents:
            raise FatPathNotFoundError(path)
        return self._extents[path], 1


class TestBootLba:
    """Tests for boot_lba function."""

    def test_sector_conversion(self):
        """Byte offsets map to absolute sectors past the boot start."""
        assert boot_lba(0) == 8192
        assert boot_lba(2048) == 8196
        assert boot_lba(4096) == 8200
        assert boot_lba(4095) == 8199


class TestBuildBootSector:
    """Tests for build_boot_sector and locate_boot_files."""

    def test_kernel_and_cmdline_lbas(self):
        """Kernel at 2048 and cmdline at 4096 give sectors 8196 and 8200."""
        lookup = FakeLookup({"/vmlinuz": 2048, "/cmdline.txt": 4096})
        sector = build_boot_sector(io.BytesIO(), plan_layout(), lookup=lookup)
        assert sector.kernel_lba == 8196
        assert sector.cmdline_lba == 8200

        decoded = decode_mbr(sector.encode())
        assert decoded.kernel_lba == 8196
        assert decoded.cmdline_lba == 8200
        assert len(decoded.partitions) == 3

    def test_partition_table_sized_to_medium(self):
        """The persistent partition is included when the medium has room."""
        lookup = FakeLookup({"/vmlinuz": 0, "/cmdline.txt": 512})
        sector = build_boot_sector(
            io.BytesIO(), plan_layout(), medium_size=2048 * MiB, lookup=lookup
        )
        assert len(sector.partitions) == 4

    def test_missing_kernel(self):
        """A missing kernel is reported by name."""
        lookup = FakeLookup({"/cmdline.txt": 4096})
        with pytest.raises(MissingBootFileError) as exc_info:
            locate_boot_files(io.BytesIO(), lookup)
        assert exc_info.value.path == "/vmlinuz"

    def test_missing_cmdline(self):
        """A missing command line is reported by name."""
        lookup = FakeLookup({"/vmlinuz": 2048})
        with pytest.raises(MissingBootFileError) as exc_info:
            locate_boot_files(io.BytesIO(), lookup)
        assert exc_info.value.path == "/cmdline.txt"

    def test_unreadable_boot_region(self):
        """A region that is not FAT reports the kernel as missing."""
        with pytest.raises(MissingBootFileError) as exc_info:
            locate_boot_files(io.BytesIO(bytes(1024)))
        assert exc_info.value.error_code == "MISSING_BOOT_FILE"


class TestWriteBootSector:
    """Tests for write_boot_sector with a real FAT region."""

    def test_sector_points_at_file_data(self):
        """Recorded LBAs address the kernel and cmdline bytes in the medium."""
        writer = FatWriter(hidden_sectors=8192)
        writer.add_file("/vmlinuz", b"KERNEL" * 1000, MTIME)
        writer.add_file("/cmdline.txt", b"console=ttyAMA0", MTIME)

        medium = io.BytesIO()
        medium.seek(BOOT_OFFSET)
        writer.write_to(medium)

        layout = plan_layout()
        sector = write_boot_sector(medium, layout)
        data = medium.getvalue()

        assert data[:512] == sector.encode()
        assert data[sector.kernel_lba * 512 :].startswith(b"KERNEL")
        assert data[sector.cmdline_lba * 512 :].startswith(b"console=ttyAMA0")

    def test_missing_kernel_in_real_region(self):
        """A FAT region without vmlinuz fails and leaves sector 0 alone."""
        writer = FatWriter(hidden_sectors=8192)
        writer.add_file("/cmdline.txt", b"x", MTIME)
        medium = io.BytesIO()
        medium.seek(BOOT_OFFSET)
        writer.write_to(medium)

        with pytest.raises(MissingBootFileError):
            write_boot_sector(medium, plan_layout())
        assert medium.getvalue()[:512] == bytes(512)
