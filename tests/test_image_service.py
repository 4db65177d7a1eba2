"""Tests for image/service.py - pack orchestration."""

from contextlib import contextmanager
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from rpi_packer.config import Settings
from rpi_packer.image.output import MaterializedImage, OutputSelectionError
from rpi_packer.image.service import (
    PackOptions,
    pack,
    pack_image,
    prepare_regions,
    validate_options,
)
from rpi_packer.image.sources import TransientFileSource
from rpi_packer.layout import MIN_TARGET_SIZE
from rpi_packer.manifest import ManifestError
from rpi_packer.types import TargetKind, UpdateStep
from rpi_packer.update import RootTransferError, UpdateRequestError

STAMP = datetime(2024, 6, 1, tzinfo=timezone.utc)
SQUASHFS = b"hsqs" + b"\x00" * 4092


def fake_make_squashfs(source_dir, dest, **kwargs):
    dest.write_bytes(SQUASHFS)


@pytest.fixture
def settings(tmp_path):
    kernel_dir = tmp_path / "kernel"
    kernel_dir.mkdir()
    (kernel_dir / "vmlinuz").write_bytes(b"KERNEL")
    ca = tmp_path / "ca.pem"
    ca.write_text("CERT")
    tmp_dir = tmp_path / "tmp"
    tmp_dir.mkdir()
    return Settings(
        config_dir=tmp_path / "config",
        kernel_dir=kernel_dir,
        ca_bundle=ca,
        tmp_dir=tmp_dir,
        hostname="pi",
    )


@pytest.fixture
def root_dir(tmp_path):
    path = tmp_path / "app"
    (path / "gokrazy").mkdir(parents=True)
    (path / "gokrazy" / "init").write_bytes(b"\x7fELF")
    return path


class FakeClient:
    """Update client that reads every uploaded region."""

    def __init__(self, target, timeout, fail_root=False):
        self.target = target
        self.timeout = timeout
        self.fail_root = fail_root
        self.uploads = {}
        self.calls = []

    def _read(self, source):
        with source.open() as reader:
            return b"".join(reader)

    def upload_root(self, source):
        self.calls.append("root")
        if self.fail_root:
            raise UpdateRequestError("boom", code="network_error")
        self.uploads["root"] = (source, self._read(source))

    def upload_boot(self, source):
        self.calls.append("boot")
        self.uploads["boot"] = (source, self._read(source))

    def switch(self):
        self.calls.append("switch")

    def reboot(self):
        self.calls.append("reboot")


def client_factory(clients, **extra):
    @contextmanager
    def factory(target, timeout):
        client = FakeClient(target, timeout, **extra)
        clients.append(client)
        yield client

    return factory


class TestValidateOptions:
    """Tests for validate_options."""

    def test_update_with_one_region(self, tmp_path):
        """An update needs both regions."""
        options = PackOptions(root_dir=tmp_path, overwrite_boot=tmp_path / "boot.img")
        with pytest.raises(OutputSelectionError):
            validate_options(options, "yes")

    def test_one_region_without_update(self, tmp_path):
        """A single region file is fine without an update."""
        options = PackOptions(root_dir=tmp_path, overwrite_root=tmp_path / "root.img")
        validate_options(options, None)


class TestPrepareRegions:
    """Tests for prepare_regions."""

    def test_missing_root_dir(self, tmp_path, settings):
        """The application directory must exist."""
        with pytest.raises(ManifestError) as exc_info:
            prepare_regions(PackOptions(root_dir=tmp_path / "nope"), settings)
        assert exc_info.value.code == "root_dir_missing"

    def test_missing_kernel_dir(self, root_dir, settings):
        """A kernel directory is required."""
        settings.kernel_dir = None
        with pytest.raises(ManifestError) as exc_info:
            prepare_regions(PackOptions(root_dir=root_dir), settings)
        assert exc_info.value.code == "kernel_dir_missing"

    def test_manifests_share_timestamp(self, root_dir, settings):
        """Both manifests carry the same build time."""
        regions, password = prepare_regions(
            PackOptions(root_dir=root_dir), settings, timestamp=STAMP
        )
        assert regions.boot.timestamp == regions.root.timestamp == STAMP
        assert regions.root.find("/etc/hostname").content == b"pi"
        assert (settings.config_dir / "http-password.txt").read_text() == password


class TestPackImage:
    """Tests for pack_image."""

    def test_discards_on_error(self, tmp_path):
        """Transient sources are deleted even when the block raises."""
        path = tmp_path / "region.tmp"
        path.write_bytes(b"x")

        class Strategy:
            target_kind = None

            def materialize(self, regions):
                return MaterializedImage(
                    boot=TransientFileSource(path, 1), root=None, boot_size=1
                )

        with pytest.raises(ValueError):
            with pack_image(Strategy(), regions=None) as image:
                assert image.boot.path.exists()
                raise ValueError("interrupted")
        assert not path.exists()


class TestPack:
    """Tests for pack function."""

    def test_update_from_transient_regions(self, root_dir, settings):
        """Without targets the regions are pushed and then deleted."""
        clients = []
        with patch(
            "rpi_packer.image.regions.make_squashfs", side_effect=fake_make_squashfs
        ):
            result = pack(
                PackOptions(root_dir=root_dir, update="yes"),
                settings=settings,
                client_factory=client_factory(clients),
                timestamp=STAMP,
            )

        (client,) = clients
        assert client.calls == ["root", "boot", "switch", "reboot"]
        assert client.target.base_url == "http://pi/"
        assert client.timeout == settings.update_timeout

        root_source, root_body = client.uploads["root"]
        boot_source, boot_body = client.uploads["boot"]
        assert root_body == SQUASHFS
        assert len(boot_body) == result.image.boot_size
        assert result.image.root_size == len(SQUASHFS)
        assert result.update.state == UpdateStep.DONE
        assert result.target_kind is None

        assert not root_source.path.exists()
        assert not boot_source.path.exists()
        assert list(settings.tmp_dir.iterdir()) == []

    def test_update_failure_still_cleans_up(self, root_dir, settings):
        """A failed update propagates and leaves no transient files."""
        clients = []
        with patch(
            "rpi_packer.image.regions.make_squashfs", side_effect=fake_make_squashfs
        ):
            with pytest.raises(RootTransferError) as exc_info:
                pack(
                    PackOptions(root_dir=root_dir, update="http://10.0.0.2/"),
                    settings=settings,
                    client_factory=client_factory(clients, fail_root=True),
                )

        assert exc_info.value.completed == ()
        assert clients[0].calls == ["root"]
        assert list(settings.tmp_dir.iterdir()) == []

    def test_full_image_file(self, root_dir, settings, tmp_path):
        """A file target gets a complete image and window sources."""
        image_path = tmp_path / "disk.img"
        with patch(
            "rpi_packer.image.regions.make_squashfs", side_effect=fake_make_squashfs
        ):
            result = pack(
                PackOptions(
                    root_dir=root_dir,
                    overwrite=image_path,
                    target_storage_bytes=MIN_TARGET_SIZE,
                ),
                settings=settings,
            )

        assert result.target_kind == TargetKind.FILE
        assert result.update is None
        assert image_path.stat().st_size == MIN_TARGET_SIZE
        with result.image.root.open() as reader:
            assert b"".join(reader) == SQUASHFS

    def test_update_without_root_source(self, root_dir, settings, tmp_path):
        """An update is refused when the output produced only one region."""
        boot = tmp_path / "boot.tmp"
        boot.write_bytes(b"B")

        class BootOnly:
            target_kind = None

            def materialize(self, regions):
                return MaterializedImage(
                    boot=TransientFileSource(boot, 1), root=None, boot_size=1
                )

        clients = []
        with patch(
            "rpi_packer.image.service.select_output", return_value=BootOnly()
        ):
            with pytest.raises(OutputSelectionError):
                pack(
                    PackOptions(root_dir=root_dir, update="yes"),
                    settings=settings,
                    client_factory=client_factory(clients),
                )
        assert clients == []
        assert not boot.exists()

    def test_settings_update_url(self, root_dir, settings, tmp_path):
        """The update URL falls back to settings."""
        settings.update_url = "http://device.lan/"
        clients = []
        with patch(
            "rpi_packer.image.regions.make_squashfs", side_effect=fake_make_squashfs
        ):
            result = pack(
                PackOptions(root_dir=root_dir),
                settings=settings,
                client_factory=client_factory(clients),
            )
        assert result.update_target.base_url == "http://device.lan/"
