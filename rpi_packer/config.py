"""Packer settings.

Values come from RPI_PACKER_* environment variables (or a .env file) on top of
the defaults below. Options passed to `pack` win over both.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_KERNEL_CMDLINE = (
    "console=ttyAMA0,115200 dwc_otg.fiq_fsm_enable=0 root=/dev/mmcblk0p2 "
    "init=/gokrazy/init rootwait panic=10 oops=panic"
)


def _default_config_dir() -> Path:
    """Return the default configuration directory."""
    return Path.home() / ".config" / "rpi-packer"


class Settings(BaseSettings):
    """Paths, image contents and update defaults for a pack run."""

    model_config = SettingsConfigDict(
        env_prefix="RPI_PACKER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    config_dir: Path = Field(
        default_factory=_default_config_dir,
        description="Directory holding the HTTP password file and optional cacert.pem",
    )
    tmp_dir: Path | None = Field(
        default=None,
        description="Directory for transient region files (uses system default if not set)",
    )
    firmware_dir: Path | None = Field(
        default=None,
        description="Directory containing the boot firmware (*.bin, *.dat, *.elf)",
    )
    kernel_dir: Path | None = Field(
        default=None,
        description="Directory containing vmlinuz and device tree blobs",
    )
    ca_bundle: Path | None = Field(
        default=None,
        description="CA certificate bundle to embed (searched on the host if not set)",
    )

    # Image contents
    hostname: str = Field(
        default="rpi",
        min_length=1,
        description="Host name set on the target system",
    )
    kernel_cmdline: str = Field(
        default=DEFAULT_KERNEL_CMDLINE,
        min_length=1,
        description="Kernel command line written to cmdline.txt",
    )
    mksquashfs: str = Field(
        default="mksquashfs",
        description="mksquashfs executable used to build the root file system",
    )

    # Remote update
    update_url: str | None = Field(
        default=None,
        description='Default update URL; "yes" derives it from the password and hostname',
    )
    update_username: str = Field(
        default="gokrazy",
        description="User name expected by the on-device update agent",
    )
    update_timeout: int = Field(
        default=600,
        ge=10,
        description="Timeout for each remote update request (seconds)",
    )

    # Device handling
    device_node_timeout: float = Field(
        default=10.0,
        gt=0,
        description="How long to wait for partition device nodes after partitioning (seconds)",
    )
    device_node_poll_interval: float = Field(
        default=0.05,
        gt=0,
        description="Initial poll interval while waiting for partition nodes (seconds)",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )


def get_settings() -> Settings:
    """Load settings from the current environment."""
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Dump settings as indented JSON, loading them first if none are given."""
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["DEFAULT_KERNEL_CMDLINE", "Settings", "get_settings", "print_settings_json"]
