"""Tests for config.py - pydantic settings."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from rpi_packer.config import (
    DEFAULT_KERNEL_CMDLINE,
    Settings,
    get_settings,
    print_settings_json,
)


class TestSettings:
    """Tests for Settings."""

    def test_default_settings(self) -> None:
        """Defaults target a stock Raspberry Pi setup."""
        settings = Settings()

        assert settings.config_dir == Path.home() / ".config" / "rpi-packer"
        assert settings.tmp_dir is None
        assert settings.hostname == "rpi"
        assert settings.kernel_cmdline == DEFAULT_KERNEL_CMDLINE
        assert "root=/dev/mmcblk0p2" in settings.kernel_cmdline
        assert settings.update_url is None
        assert settings.update_username == "gokrazy"
        assert settings.update_timeout == 600
        assert settings.mksquashfs == "mksquashfs"
        assert settings.log_level == "INFO"

    def test_settings_from_env(self) -> None:
        """RPI_PACKER_ variables override the defaults."""
        with patch.dict(
            os.environ,
            {
                "RPI_PACKER_HOSTNAME": "kiosk",
                "RPI_PACKER_LOG_LEVEL": "DEBUG",
                "RPI_PACKER_UPDATE_TIMEOUT": "120",
                "RPI_PACKER_KERNEL_DIR": "/opt/kernel",
            },
        ):
            settings = Settings()
            assert settings.hostname == "kiosk"
            assert settings.log_level == "DEBUG"
            assert settings.update_timeout == 120
            assert settings.kernel_dir == Path("/opt/kernel")

    def test_invalid_values_rejected(self) -> None:
        """Out-of-range values should fail validation."""
        with patch.dict(os.environ, {"RPI_PACKER_UPDATE_TIMEOUT": "1"}):
            with pytest.raises(ValidationError):
                Settings()
        with pytest.raises(ValidationError):
            Settings(hostname="")

    def test_empty_kernel_cmdline_rejected(self) -> None:
        """cmdline.txt must have content for the boot sector to point at."""
        with pytest.raises(ValidationError):
            Settings(kernel_cmdline="")
        with patch.dict(os.environ, {"RPI_PACKER_KERNEL_CMDLINE": ""}):
            with pytest.raises(ValidationError):
                Settings()


class TestGetSettings:
    """Tests for get_settings."""

    def test_get_settings_returns_settings(self) -> None:
        """A fresh Settings is returned."""
        assert isinstance(get_settings(), Settings)


class TestPrintSettingsJson:
    """Tests for print_settings_json."""

    def test_print_settings_json(self) -> None:
        """The dump is JSON with every field."""
        parsed = json.loads(print_settings_json(Settings(hostname="pi")))

        assert parsed["hostname"] == "pi"
        assert "config_dir" in parsed
        assert "update_url" in parsed
        assert "device_node_timeout" in parsed

    def test_print_settings_json_default(self) -> None:
        """Without an argument the environment settings are dumped."""
        parsed = json.loads(print_settings_json())
        assert "kernel_cmdline" in parsed
