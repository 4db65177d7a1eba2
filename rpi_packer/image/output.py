"""Output strategies.

Each strategy writes the regions somewhere and reports, per region, a
TransferSource to read the written bytes back plus the exact byte count:

- DeviceOutput: partition a block device and write both regions and the boot sector
- FileOutput: build a complete, sparse disk image file of a given size
- PartitionFilesOutput: write only the requested region images
- TransientOutput: write both regions to temporary files (update only)

select_output() picks the strategy from the pack options.
"""

import logging
import os
import stat
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Protocol

from rpi_packer.fs.mbr import encode_mbr
from rpi_packer.image.bootsector import build_boot_sector, write_boot_sector
from rpi_packer.image.device import (
    reread_partition_table,
    validate_device,
    wait_for_partition_nodes,
)
from rpi_packer.image.errors import (
    DeviceIOError,
    FileIOError,
    PackIOError,
    RegionOverflowError,
)
from rpi_packer.image.regions import RegionSerializer, copy_stream
from rpi_packer.image.sources import (
    DevicePartitionSource,
    FileWindowSource,
    NamedFileSource,
    TransferSource,
    TransientFileSource,
)
from rpi_packer.layout import InvalidGeometryError, RegionLayout, plan_layout
from rpi_packer.types import TargetKind

logger = logging.getLogger(__name__)


class OutputSelectionError(Exception):
    """Pack options name conflicting or incomplete targets."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = "INVALID_TARGETS"


@dataclass(frozen=True)
class StorageTarget:
    """A path to write to and what kind of storage it is."""

    path: Path
    kind: TargetKind
    total_size: int | None = None

    @classmethod
    def detect(cls, path: Path, total_size: int | None = None) -> "StorageTarget":
        """Classify path as a block device or a (possibly new) file."""
        try:
            is_device = stat.S_ISBLK(os.stat(path).st_mode)
        except FileNotFoundError:
            is_device = False
        kind = TargetKind.DEVICE if is_device else TargetKind.FILE
        return cls(path=path, kind=kind, total_size=total_size)


@dataclass(frozen=True)
class MaterializedImage:
    """Result of an output strategy.

    Attributes:
        boot: Source of the written boot region (None if not written).
        root: Source of the written root region (None if not written).
        boot_size: Exact boot region length in bytes.
        root_size: Exact root region length in bytes.
    """

    boot: TransferSource | None
    root: TransferSource | None
    boot_size: int = 0
    root_size: int = 0

    def sources(self) -> list[TransferSource]:
        return [s for s in (self.boot, self.root) if s is not None]

    def discard(self) -> None:
        """Discard every source (only transient files are deleted)."""
        for source in self.sources():
            source.discard()


class OutputStrategy(Protocol):
    target_kind: TargetKind | None

    def materialize(self, regions: RegionSerializer) -> MaterializedImage: ...


def _check_root_size(size: int, layout: RegionLayout) -> None:
    if size > layout.root_slot_size:
        raise RegionOverflowError("root", size, layout.root_slot_size)


def _sync(f: BinaryIO) -> None:
    f.flush()
    os.fsync(f.fileno())


def _serialize_root(regions: RegionSerializer, tmp_dir: Path | None) -> tuple[Path, int]:
    """Serialize the root region to a transient file.

    The caller owns the returned file.
    """
    fd, name = tempfile.mkstemp(prefix="rpi-packer-root-", suffix=".squashfs", dir=tmp_dir)
    path = Path(name)
    try:
        with os.fdopen(fd, "wb") as f:
            size = regions.write_root(f)
    except BaseException:
        path.unlink(missing_ok=True)
        raise
    return path, size


class DeviceOutput:
    """Partition and write a whole block device.

    Args:
        device: Whole-device path (e.g., /dev/mmcblk0).
        layout: Region layout (device mode, no total size).
        node_timeout: Seconds to wait for partition nodes.
        poll_interval: Initial poll interval for partition nodes.
        tmp_dir: Directory for the transient root region file.
    """

    target_kind = TargetKind.DEVICE

    def __init__(
        self,
        device: Path,
        layout: RegionLayout | None = None,
        *,
        node_timeout: float = 10.0,
        poll_interval: float = 0.05,
        tmp_dir: Path | None = None,
    ) -> None:
        self.device = str(device)
        self.layout = layout or plan_layout()
        self.node_timeout = node_timeout
        self.poll_interval = poll_interval
        self.tmp_dir = tmp_dir
        self.medium_size: int | None = None

    def materialize(self, regions: RegionSerializer) -> MaterializedImage:
        info = validate_device(self.device)
        if info.size_bytes is None:
            raise DeviceIOError(
                f"Could not determine the size of {info.path}",
                error_code="DEVICE_SIZE_UNKNOWN",
            )
        self.device = info.path
        self.medium_size = info.size_bytes
        partitions = self.layout.partitions(self.medium_size)

        try:
            with open(self.device, "r+b") as dev:
                dev.write(encode_mbr(partitions))
                _sync(dev)
                reread_partition_table(dev.fileno(), self.device)
            logger.info("Wrote partition table to %s", self.device)

            boot_node, root_node = wait_for_partition_nodes(
                self.device,
                (1, 2),
                timeout=self.node_timeout,
                initial_interval=self.poll_interval,
            )

            with open(boot_node, "r+b") as part:
                boot_size = regions.write_boot(part)
                _sync(part)
            if boot_size > self.layout.boot_capacity:
                raise RegionOverflowError("boot", boot_size, self.layout.boot_capacity)

            with open(boot_node, "rb") as part:
                sector = build_boot_sector(part, self.layout, self.medium_size)
            with open(self.device, "r+b") as dev:
                dev.write(sector.encode())
                _sync(dev)

            root_file, root_size = _serialize_root(regions, self.tmp_dir)
            try:
                _check_root_size(root_size, self.layout)
                with open(root_file, "rb") as src, open(root_node, "r+b") as part:
                    copy_stream(src, part, root_size)
                    _sync(part)
            finally:
                root_file.unlink(missing_ok=True)
        except PermissionError as e:
            raise DeviceIOError(
                f"Permission denied writing to {self.device}; try running with sudo",
                error_code="PERMISSION_DENIED",
            ) from e
        except OSError as e:
            raise DeviceIOError(f"Error writing to {self.device}: {e}") from e

        logger.info(
            "Wrote boot (%d bytes) and root (%d bytes) to %s",
            boot_size,
            root_size,
            self.device,
        )
        return MaterializedImage(
            boot=DevicePartitionSource(Path(boot_node), boot_size),
            root=DevicePartitionSource(Path(root_node), root_size),
            boot_size=boot_size,
            root_size=root_size,
        )


class FileOutput:
    """Write a complete disk image file of layout.total_size bytes."""

    target_kind = TargetKind.FILE

    def __init__(
        self, path: Path, layout: RegionLayout, *, tmp_dir: Path | None = None
    ) -> None:
        if layout.total_size is None:
            raise InvalidGeometryError("a disk image file needs a total size")
        self.path = path
        self.layout = layout
        self.tmp_dir = tmp_dir

    def materialize(self, regions: RegionSerializer) -> MaterializedImage:
        layout = self.layout
        try:
            with open(self.path, "w+b") as f:
                f.truncate(layout.total_size)
                f.write(encode_mbr(layout.partitions()))

                f.seek(layout.boot_offset)
                boot_size = regions.write_boot(f)
                if boot_size > layout.boot_capacity:
                    raise RegionOverflowError("boot", boot_size, layout.boot_capacity)
                write_boot_sector(f, layout, layout.total_size)

                root_file, root_size = _serialize_root(regions, self.tmp_dir)
                try:
                    _check_root_size(root_size, layout)
                    f.seek(layout.root_offset)
                    with open(root_file, "rb") as src:
                        copy_stream(src, f, root_size)
                finally:
                    root_file.unlink(missing_ok=True)
                _sync(f)
        except OSError as e:
            raise FileIOError(f"Error writing {self.path}: {e}") from e

        logger.info("Wrote %d byte disk image to %s", layout.total_size, self.path)
        return MaterializedImage(
            boot=FileWindowSource(self.path, boot_size, layout.boot_offset),
            root=FileWindowSource(self.path, root_size, layout.root_offset),
            boot_size=boot_size,
            root_size=root_size,
        )


class PartitionFilesOutput:
    """Write only the requested region images to files or partitions."""

    target_kind = None

    def __init__(
        self,
        boot_path: Path | None = None,
        root_path: Path | None = None,
        *,
        layout: RegionLayout | None = None,
        tmp_dir: Path | None = None,
    ) -> None:
        if boot_path is None and root_path is None:
            raise OutputSelectionError("no region file requested")
        self.boot_path = boot_path
        self.root_path = root_path
        self.layout = layout or plan_layout()
        self.tmp_dir = tmp_dir

    @staticmethod
    def _open(target: StorageTarget) -> BinaryIO:
        # Partitions must not be truncated
        mode = "r+b" if target.kind == TargetKind.DEVICE else "wb"
        return open(target.path, mode)

    @staticmethod
    def _io_error(target: StorageTarget, e: OSError) -> PackIOError:
        message = f"Error writing {target.path}: {e}"
        if target.kind == TargetKind.DEVICE:
            return DeviceIOError(message)
        return FileIOError(message)

    def materialize(self, regions: RegionSerializer) -> MaterializedImage:
        boot: NamedFileSource | None = None
        root: NamedFileSource | None = None
        boot_size = root_size = 0

        if self.boot_path is not None:
            target = StorageTarget.detect(self.boot_path)
            try:
                with self._open(target) as f:
                    boot_size = regions.write_boot(f)
                    _sync(f)
            except OSError as e:
                raise self._io_error(target, e) from e
            if boot_size > self.layout.boot_capacity:
                raise RegionOverflowError("boot", boot_size, self.layout.boot_capacity)
            boot = NamedFileSource(self.boot_path, boot_size)
            logger.info("Wrote boot region (%d bytes) to %s", boot_size, self.boot_path)

        if self.root_path is not None:
            target = StorageTarget.detect(self.root_path)
            try:
                root_file, root_size = _serialize_root(regions, self.tmp_dir)
                try:
                    _check_root_size(root_size, self.layout)
                    with open(root_file, "rb") as src, self._open(target) as f:
                        copy_stream(src, f, root_size)
                        _sync(f)
                finally:
                    root_file.unlink(missing_ok=True)
            except OSError as e:
                raise self._io_error(target, e) from e
            root = NamedFileSource(self.root_path, root_size)
            logger.info("Wrote root region (%d bytes) to %s", root_size, self.root_path)

        return MaterializedImage(
            boot=boot, root=root, boot_size=boot_size, root_size=root_size
        )


class TransientOutput:
    """Write both regions to temporary files deleted after the pack."""

    target_kind = None

    def __init__(
        self, *, layout: RegionLayout | None = None, tmp_dir: Path | None = None
    ) -> None:
        self.layout = layout or plan_layout()
        self.tmp_dir = tmp_dir

    def materialize(self, regions: RegionSerializer) -> MaterializedImage:
        written: list[Path] = []
        try:
            try:
                fd, name = tempfile.mkstemp(
                    prefix="rpi-packer-boot-", suffix=".fat", dir=self.tmp_dir
                )
                boot_file = Path(name)
                written.append(boot_file)
                with os.fdopen(fd, "wb") as f:
                    boot_size = regions.write_boot(f)
                if boot_size > self.layout.boot_capacity:
                    raise RegionOverflowError("boot", boot_size, self.layout.boot_capacity)

                root_file, root_size = _serialize_root(regions, self.tmp_dir)
                written.append(root_file)
                _check_root_size(root_size, self.layout)
            except BaseException:
                for path in written:
                    path.unlink(missing_ok=True)
                raise
        except OSError as e:
            raise FileIOError(f"Error writing transient region file: {e}") from e

        logger.debug("Transient regions: %s, %s", boot_file, root_file)
        return MaterializedImage(
            boot=TransientFileSource(boot_file, boot_size),
            root=TransientFileSource(root_file, root_size),
            boot_size=boot_size,
            root_size=root_size,
        )


def select_output(
    *,
    overwrite: Path | None = None,
    target_storage_bytes: int | None = None,
    overwrite_boot: Path | None = None,
    overwrite_root: Path | None = None,
    node_timeout: float = 10.0,
    poll_interval: float = 0.05,
    tmp_dir: Path | None = None,
) -> OutputStrategy:
    """Pick the output strategy for the pack options.

    Raises:
        OutputSelectionError: Full and per-region targets are combined.
        InvalidGeometryError: A file target has no or a too small size.
    """
    if overwrite is not None:
        if overwrite_boot is not None or overwrite_root is not None:
            raise OutputSelectionError(
                "--overwrite cannot be combined with --overwrite-boot/--overwrite-root"
            )
        target = StorageTarget.detect(overwrite, target_storage_bytes)
        if target.kind == TargetKind.DEVICE:
            if target_storage_bytes is not None:
                logger.warning(
                    "Ignoring target storage size for block device %s", overwrite
                )
            return DeviceOutput(
                overwrite,
                plan_layout(),
                node_timeout=node_timeout,
                poll_interval=poll_interval,
                tmp_dir=tmp_dir,
            )
        if target_storage_bytes is None:
            raise InvalidGeometryError(
                f"{overwrite} is not a block device; --target-storage-bytes is required"
            )
        return FileOutput(overwrite, plan_layout(target_storage_bytes), tmp_dir=tmp_dir)

    if overwrite_boot is not None or overwrite_root is not None:
        return PartitionFilesOutput(overwrite_boot, overwrite_root, tmp_dir=tmp_dir)

    return TransientOutput(tmp_dir=tmp_dir)


__all__ = [
    "DeviceOutput",
    "FileOutput",
    "MaterializedImage",
    "OutputSelectionError",
    "OutputStrategy",
    "PartitionFilesOutput",
    "StorageTarget",
    "TransientOutput",
    "select_output",
]
