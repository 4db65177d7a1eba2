"""Tests for fs/squashfs.py - mksquashfs invocation."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from rpi_packer.fs.squashfs import (
    SquashfsError,
    compose_squashfs_command,
    make_squashfs,
)


class TestComposeSquashfsCommand:
    """Tests for compose_squashfs_command."""

    def test_basic_command(self):
        """The command overwrites the output and owns everything by root."""
        cmd = compose_squashfs_command(Path("/stage"), Path("/out/root.squashfs"))
        assert cmd == [
            "mksquashfs",
            "/stage",
            "/out/root.squashfs",
            "-noappend",
            "-all-root",
            "-no-progress",
        ]

    def test_fixed_timestamp(self):
        """A timestamp pins both file and file system times."""
        cmd = compose_squashfs_command(
            Path("/stage"), Path("/out.sq"), mksquashfs="/usr/sbin/mksquashfs", timestamp=42
        )
        assert cmd[0] == "/usr/sbin/mksquashfs"
        assert cmd[-4:] == ["-mkfs-time", "42", "-all-time", "42"]


class TestMakeSquashfs:
    """Tests for make_squashfs."""

    def test_success(self):
        """A zero exit status is success."""
        with patch("rpi_packer.fs.squashfs.subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout="done")
            make_squashfs(Path("/stage"), Path("/out.sq"), timeout=30)

        args, kwargs = mock_run.call_args
        assert args[0][:3] == ["mksquashfs", "/stage", "/out.sq"]
        assert kwargs["timeout"] == 30

    def test_not_found(self):
        """A missing executable has its own error code."""
        with patch(
            "rpi_packer.fs.squashfs.subprocess.run", side_effect=FileNotFoundError()
        ):
            with pytest.raises(SquashfsError) as exc_info:
                make_squashfs(Path("/stage"), Path("/out.sq"))
        assert exc_info.value.code == "mksquashfs_not_found"

    def test_timeout(self):
        """A timeout is reported."""
        with patch(
            "rpi_packer.fs.squashfs.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="mksquashfs", timeout=5),
        ):
            with pytest.raises(SquashfsError) as exc_info:
                make_squashfs(Path("/stage"), Path("/out.sq"), timeout=5)
        assert exc_info.value.code == "squashfs_timeout"

    def test_nonzero_exit(self):
        """A failing mksquashfs reports its exit code and output tail."""
        with patch("rpi_packer.fs.squashfs.subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(
                returncode=1, stdout="line\nFATAL ERROR: no space"
            )
            with pytest.raises(SquashfsError) as exc_info:
                make_squashfs(Path("/stage"), Path("/out.sq"))
        assert exc_info.value.exit_code == 1
        assert "FATAL ERROR" in exc_info.value.message
