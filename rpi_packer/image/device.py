"""Block device handling for writing images to SD cards.

This module handles all device-related steps around a raw write:
- Validate the target is an unmounted whole block device, not the system disk
- Query the device size
- Derive partition node paths (/dev/sdb1, /dev/mmcblk0p1, /dev/disk2s1)
- Ask the kernel to re-read the partition table
- Wait, with bounded exponential backoff, for partition nodes to appear

Partition nodes are created asynchronously (udev) after the partition table
changes; they are polled for rather than assumed to exist.
"""

import errno
import fcntl
import logging
import os
import re
import stat
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from rpi_packer.image.errors import DeviceIOError, DeviceNodeTimeoutError

logger = logging.getLogger(__name__)

# linux/fs.h: _IO(0x12, 95)
BLKRRPART = 0x125F

MAX_POLL_INTERVAL = 1.0


@dataclass
class DeviceInfo:
    """Information about a validated block device.

    Attributes:
        path: Absolute path to the device (e.g., '/dev/sdb').
        size_bytes: Size of the device in bytes (if available).
        mount_points: Mount points of the device or its partitions.
    """

    path: str
    size_bytes: int | None = None
    mount_points: list[str] = field(default_factory=list)


class DeviceValidationError(Exception):
    """Base exception for device validation errors."""

    def __init__(self, message: str, error_code: str) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class NotBlockDeviceError(DeviceValidationError):
    """Path does not exist or is not a block device."""

    def __init__(self, device_path: str) -> None:
        super().__init__(
            f"Not a block device: {device_path}", error_code="NOT_BLOCK_DEVICE"
        )
        self.device_path = device_path


class PartitionDeviceError(DeviceValidationError):
    """Target is a partition; the full image needs the whole device."""

    def __init__(self, device_path: str) -> None:
        super().__init__(
            f"{device_path} is a partition. Pass the whole device "
            "(e.g., /dev/sdb, /dev/mmcblk0) to write a full image.",
            error_code="PARTITION_NOT_ALLOWED",
        )
        self.device_path = device_path


class DeviceMountedError(DeviceValidationError):
    """Device or its partitions are mounted."""

    def __init__(self, device_path: str, mount_points: list[str]) -> None:
        super().__init__(
            f"Device {device_path} has mounted partitions: {', '.join(mount_points)}. "
            "Unmount all partitions before writing.",
            error_code="DEVICE_MOUNTED",
        )
        self.device_path = device_path
        self.mount_points = mount_points


class SystemDeviceError(DeviceValidationError):
    """Device holds the running system's root file system."""

    def __init__(self, device_path: str) -> None:
        super().__init__(
            f"Device {device_path} holds the running system's root file system. "
            "Refusing to overwrite it.",
            error_code="SYSTEM_DEVICE",
        )
        self.device_path = device_path


# /dev/sdb1, /dev/vdb1
_PARTITION_PATTERN_SD = re.compile(r"^(/dev/[shv]d[a-z]+)(\d+)$")
# /dev/mmcblk0p1, /dev/nvme0n1p1, /dev/loop0p1
_PARTITION_PATTERN_P = re.compile(r"^(/dev/(?:mmcblk\d+|nvme\d+n\d+|loop\d+))p(\d+)$")
# /dev/disk2s1, /dev/rdisk2s1 (macOS)
_PARTITION_PATTERN_DISK = re.compile(r"^(/dev/r?disk\d+)s(\d+)$")

_PARTITION_PATTERNS = (_PARTITION_PATTERN_SD, _PARTITION_PATTERN_P, _PARTITION_PATTERN_DISK)


def partition_path(device_path: str, number: int) -> str:
    """Return the device node of partition number on device_path.

    Examples:
        /dev/sdb, 1      -> /dev/sdb1
        /dev/mmcblk0, 2  -> /dev/mmcblk0p2
        /dev/disk2, 1    -> /dev/disk2s1
    """
    if re.match(r"^/dev/(mmcblk|nvme|loop)", device_path):
        return f"{device_path}p{number}"
    if device_path.startswith(("/dev/disk", "/dev/rdisk")):
        return f"{device_path}s{number}"
    return f"{device_path}{number}"


def whole_device(path: str) -> str:
    """Map a partition node to its whole device; other paths are returned as-is."""
    for pattern in _PARTITION_PATTERNS:
        match = pattern.match(path)
        if match:
            return match.group(1)
    return path


def is_partition_path(device_path: str) -> bool:
    """Check if a device path names a partition."""
    return whole_device(device_path) != device_path


def is_block_device(device_path: str) -> bool:
    """Check if a path is a block device."""
    try:
        return stat.S_ISBLK(os.stat(device_path).st_mode)
    except OSError:
        return False


def _read_mounts() -> list[tuple[str, str]]:
    try:
        with open("/proc/mounts") as f:
            return [
                (parts[0], parts[1])
                for parts in (line.split() for line in f)
                if len(parts) >= 2
            ]
    except OSError:
        logger.warning("Could not read /proc/mounts, skipping mount checks")
        return []


def get_mount_points(device_path: str) -> list[str]:
    """Get mount points of a device and its partitions."""
    return [
        mount_point
        for source, mount_point in _read_mounts()
        if source == device_path or whole_device(source) == device_path
    ]


def get_root_device() -> str | None:
    """Return the whole device holding '/', or None if unknown."""
    for source, mount_point in _read_mounts():
        if mount_point == "/":
            return whole_device(source)
    return None


def get_device_size(device_path: str) -> int | None:
    """Get the size of a block device in bytes.

    Reads sysfs first and falls back to seeking to the end of the device.
    """
    size_path = Path(f"/sys/block/{Path(device_path).name}/size")
    try:
        if size_path.exists():
            # Size is in 512-byte sectors
            return int(size_path.read_text().strip()) * 512
    except (OSError, ValueError) as e:
        logger.warning("Could not read %s: %s", size_path, e)

    try:
        with open(device_path, "rb") as f:
            return f.seek(0, os.SEEK_END)
    except OSError as e:
        logger.warning("Could not determine size of %s: %s", device_path, e)
    return None


def validate_device(device_path: str, *, allow_mounted: bool = False) -> DeviceInfo:
    """Validate a whole block device before partitioning it.

    Raises:
        NotBlockDeviceError: Path is missing or not a block device.
        PartitionDeviceError: Path names a partition.
        SystemDeviceError: Device holds the root file system.
        DeviceMountedError: Device is mounted and allow_mounted is False.
    """
    device_path = os.path.abspath(device_path)
    logger.debug("Validating device: %s", device_path)

    if not is_block_device(device_path):
        raise NotBlockDeviceError(device_path)
    if is_partition_path(device_path):
        raise PartitionDeviceError(device_path)
    if get_root_device() == device_path:
        raise SystemDeviceError(device_path)

    mount_points = get_mount_points(device_path)
    if mount_points:
        if not allow_mounted:
            raise DeviceMountedError(device_path, mount_points)
        logger.warning("Device %s has mounted partitions: %s", device_path, mount_points)

    size_bytes = get_device_size(device_path)
    logger.info("Device validated: %s (size=%s)", device_path, size_bytes)
    return DeviceInfo(path=device_path, size_bytes=size_bytes, mount_points=mount_points)


def reread_partition_table(fd: int, device_path: str) -> None:
    """Ask the kernel to re-read the partition table of an open device.

    Failure is logged, not raised: on systems without BLKRRPART the nodes may
    still appear through other means, and wait_for_partition_nodes bounds the
    wait either way.
    """
    try:
        fcntl.ioctl(fd, BLKRRPART)
        logger.debug("Re-read partition table of %s", device_path)
    except OSError as e:
        level = logging.DEBUG if e.errno == errno.ENOTTY else logging.WARNING
        logger.log(level, "BLKRRPART on %s failed: %s", device_path, e)


def _node_ready(path: str) -> bool:
    return os.path.exists(path) and os.access(path, os.W_OK)


def wait_for_partition_nodes(
    device_path: str,
    numbers: tuple[int, ...] = (1, 2),
    *,
    timeout: float = 10.0,
    initial_interval: float = 0.05,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> list[str]:
    """Wait until partition nodes exist and are writable.

    Polls with exponential backoff (capped at MAX_POLL_INTERVAL) until all
    nodes are ready or timeout seconds have passed.

    Returns:
        Paths of the partition nodes, in the order of numbers.

    Raises:
        DeviceNodeTimeoutError: Nodes still missing after timeout.
    """
    paths = [partition_path(device_path, n) for n in numbers]
    logger.info("Waiting for %s to appear", ", ".join(paths))

    deadline = clock() + timeout
    interval = initial_interval
    while True:
        missing = [p for p in paths if not _node_ready(p)]
        if not missing:
            return paths
        remaining = deadline - clock()
        if remaining <= 0:
            raise DeviceNodeTimeoutError(device_path, missing, timeout)
        sleep(min(interval, remaining))
        interval = min(interval * 2, MAX_POLL_INTERVAL)


__all__ = [
    "BLKRRPART",
    "DeviceIOError",
    "DeviceInfo",
    "DeviceMountedError",
    "DeviceValidationError",
    "NotBlockDeviceError",
    "PartitionDeviceError",
    "SystemDeviceError",
    "get_device_size",
    "get_mount_points",
    "get_root_device",
    "is_block_device",
    "is_partition_path",
    "partition_path",
    "reread_partition_table",
    "validate_device",
    "wait_for_partition_nodes",
    "whole_device",
]
