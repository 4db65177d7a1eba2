"""Tests for image/device.py - block device helpers."""

import errno
import stat
from unittest.mock import mock_open, patch

import pytest

from rpi_packer.image.device import (
    BLKRRPART,
    DeviceMountedError,
    NotBlockDeviceError,
    PartitionDeviceError,
    SystemDeviceError,
    get_device_size,
    get_mount_points,
    get_root_device,
    is_block_device,
    is_partition_path,
    partition_path,
    reread_partition_table,
    validate_device,
    wait_for_partition_nodes,
    whole_device,
)
from rpi_packer.image.errors import DeviceIOError, DeviceNodeTimeoutError

MOUNTS = """\
/dev/sda2 / ext4 rw,relatime 0 0
/dev/sda1 /boot vfat rw 0 0
/dev/mmcblk0p1 /media/user/boot vfat rw 0 0
proc /proc proc rw 0 0
"""


class TestPartitionPath:
    """Tests for partition node naming."""

    def test_sd(self):
        """SCSI disks append the number."""
        assert partition_path("/dev/sdb", 1) == "/dev/sdb1"

    def test_mmcblk_nvme_loop(self):
        """mmcblk, nvme and loop devices use a p separator."""
        assert partition_path("/dev/mmcblk0", 2) == "/dev/mmcblk0p2"
        assert partition_path("/dev/nvme0n1", 1) == "/dev/nvme0n1p1"
        assert partition_path("/dev/loop3", 4) == "/dev/loop3p4"

    def test_macos_disk(self):
        """macOS disks use an s separator."""
        assert partition_path("/dev/disk2", 1) == "/dev/disk2s1"
        assert partition_path("/dev/rdisk2", 2) == "/dev/rdisk2s2"


class TestWholeDevice:
    """Tests for whole_device and is_partition_path."""

    def test_partitions(self):
        """Partition nodes map to their device."""
        assert whole_device("/dev/sdb1") == "/dev/sdb"
        assert whole_device("/dev/mmcblk0p2") == "/dev/mmcblk0"
        assert whole_device("/dev/nvme0n1p1") == "/dev/nvme0n1"
        assert whole_device("/dev/disk2s1") == "/dev/disk2"

    def test_whole_devices(self):
        """Whole devices and files are returned unchanged."""
        for path in ("/dev/sdb", "/dev/mmcblk0", "/dev/nvme0n1", "/tmp/disk.img"):
            assert whole_device(path) == path
            assert is_partition_path(path) is False

    def test_is_partition(self):
        """Partition nodes are detected."""
        assert is_partition_path("/dev/sda1") is True
        assert is_partition_path("/dev/loop0p1") is True


class TestMounts:
    """Tests for mount point and root device detection."""

    def test_mount_points_include_partitions(self):
        """Mounted partitions count for their whole device."""
        with patch("builtins.open", mock_open(read_data=MOUNTS)):
            assert get_mount_points("/dev/sda") == ["/", "/boot"]
            assert get_mount_points("/dev/mmcblk0") == ["/media/user/boot"]
            assert get_mount_points("/dev/sdb") == []

    def test_root_device(self):
        """The device holding / is found."""
        with patch("builtins.open", mock_open(read_data=MOUNTS)):
            assert get_root_device() == "/dev/sda"

    def test_unreadable_mounts(self):
        """Missing /proc/mounts means no mount information."""
        with patch("builtins.open", side_effect=OSError("no proc")):
            assert get_mount_points("/dev/sda") == []
            assert get_root_device() is None


class TestIsBlockDevice:
    """Tests for is_block_device."""

    def test_regular_file(self, tmp_path):
        """Regular files are not block devices."""
        path = tmp_path / "disk.img"
        path.write_bytes(b"")
        assert is_block_device(str(path)) is False

    def test_missing(self):
        """Missing paths are not block devices."""
        assert is_block_device("/nonexistent/device") is False

    def test_block_device(self):
        """stat reporting S_IFBLK is a block device."""
        with patch("os.stat") as mock_stat:
            mock_stat.return_value.st_mode = stat.S_IFBLK | 0o660
            assert is_block_device("/dev/sdb") is True


class TestGetDeviceSize:
    """Tests for get_device_size."""

    def test_from_sysfs(self):
        """sysfs size is in 512-byte sectors."""
        with (
            patch("pathlib.Path.exists", return_value=True),
            patch("pathlib.Path.read_text", return_value="3906250\n"),
        ):
            assert get_device_size("/dev/sdb") == 3906250 * 512

    def test_seek_fallback(self, tmp_path):
        """Without sysfs the size comes from seeking to the end."""
        path = tmp_path / "disk.img"
        path.write_bytes(b"\x00" * 4096)
        assert get_device_size(str(path)) == 4096

    def test_unknown(self):
        """Unreadable devices have no size."""
        assert get_device_size("/nonexistent/device") is None


class TestValidateDevice:
    """Tests for validate_device."""

    def test_not_block_device(self, tmp_path):
        """Regular files are rejected."""
        path = tmp_path / "disk.img"
        path.write_bytes(b"")
        with pytest.raises(NotBlockDeviceError) as exc_info:
            validate_device(str(path))
        assert exc_info.value.error_code == "NOT_BLOCK_DEVICE"

    def test_partition_rejected(self):
        """Partitions are rejected."""
        with patch("rpi_packer.image.device.is_block_device", return_value=True):
            with pytest.raises(PartitionDeviceError):
                validate_device("/dev/sdb1")

    def test_system_device_rejected(self):
        """The device holding / is rejected."""
        with (
            patch("rpi_packer.image.device.is_block_device", return_value=True),
            patch("rpi_packer.image.device.get_root_device", return_value="/dev/sda"),
        ):
            with pytest.raises(SystemDeviceError):
                validate_device("/dev/sda")

    def test_mounted_rejected(self):
        """Mounted devices are rejected."""
        with (
            patch("rpi_packer.image.device.is_block_device", return_value=True),
            patch("rpi_packer.image.device.get_root_device", return_value="/dev/sda"),
            patch(
                "rpi_packer.image.device.get_mount_points",
                return_value=["/media/boot"],
            ),
        ):
            with pytest.raises(DeviceMountedError) as exc_info:
                validate_device("/dev/sdb")
        assert exc_info.value.mount_points == ["/media/boot"]

    def test_valid_device(self):
        """An unmounted whole device validates with its size."""
        with (
            patch("rpi_packer.image.device.is_block_device", return_value=True),
            patch("rpi_packer.image.device.get_root_device", return_value="/dev/sda"),
            patch("rpi_packer.image.device.get_mount_points", return_value=[]),
            patch("rpi_packer.image.device.get_device_size", return_value=8 << 30),
        ):
            info = validate_device("/dev/mmcblk0")
        assert info.path == "/dev/mmcblk0"
        assert info.size_bytes == 8 << 30


class TestRereadPartitionTable:
    """Tests for reread_partition_table."""

    def test_issues_ioctl(self):
        """BLKRRPART is issued on the device fd."""
        with patch("rpi_packer.image.device.fcntl.ioctl") as mock_ioctl:
            reread_partition_table(7, "/dev/sdb")
        mock_ioctl.assert_called_once_with(7, BLKRRPART)

    def test_failure_is_logged(self, caplog):
        """A failing ioctl is logged, not raised."""
        with patch(
            "rpi_packer.image.device.fcntl.ioctl",
            side_effect=OSError(errno.EBUSY, "busy"),
        ):
            reread_partition_table(7, "/dev/sdb")
        assert "BLKRRPART" in caplog.text


class FakeClock:
    """Deterministic clock advanced by sleep()."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class TestWaitForPartitionNodes:
    """Tests for wait_for_partition_nodes."""

    def test_nodes_present(self):
        """Present nodes return immediately."""
        clock = FakeClock()
        with patch("rpi_packer.image.device._node_ready", return_value=True):
            paths = wait_for_partition_nodes(
                "/dev/mmcblk0", timeout=1, sleep=clock.sleep, clock=clock
            )
        assert paths == ["/dev/mmcblk0p1", "/dev/mmcblk0p2"]
        assert clock.sleeps == []

    def test_backoff_until_ready(self):
        """Polling backs off exponentially until the nodes appear."""
        clock = FakeClock()
        with patch(
            "rpi_packer.image.device._node_ready",
            side_effect=lambda path: clock.now >= 0.3,
        ):
            paths = wait_for_partition_nodes(
                "/dev/sdb",
                timeout=10,
                initial_interval=0.05,
                sleep=clock.sleep,
                clock=clock,
            )
        assert paths == ["/dev/sdb1", "/dev/sdb2"]
        assert clock.sleeps == [0.05, 0.1, 0.2]

    def test_timeout(self):
        """Nodes that never appear raise after the timeout."""
        clock = FakeClock()
        with patch("rpi_packer.image.device._node_ready", return_value=False):
            with pytest.raises(DeviceNodeTimeoutError) as exc_info:
                wait_for_partition_nodes(
                    "/dev/sdb", timeout=2, sleep=clock.sleep, clock=clock
                )
        assert isinstance(exc_info.value, DeviceIOError)
        assert exc_info.value.missing == ["/dev/sdb1", "/dev/sdb2"]
        assert clock.now <= 2 + 1e-9
        assert max(clock.sleeps) <= 1.0
