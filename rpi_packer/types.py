"""Shared type definitions for rpi_packer.

This module contains enums shared across subpackages to avoid circular
imports.
"""

from enum import Enum


class TargetKind(str, Enum):
    """Kind of storage target an image is written to."""

    DEVICE = "device"
    FILE = "file"


class SourceKind(str, Enum):
    """Where the bytes of a materialized region live."""

    DEVICE_PARTITION = "device-partition"
    FILE_WINDOW = "file-window"
    NAMED_FILE = "named-file"
    TRANSIENT_FILE = "transient-file"


class UpdateStep(str, Enum):
    """Steps of a remote update, in execution order."""

    TRANSFER_ROOT = "transfer-root"
    TRANSFER_BOOT = "transfer-boot"
    SWITCH = "switch"
    REBOOT = "reboot"
    DONE = "done"


__all__ = ["SourceKind", "TargetKind", "UpdateStep"]
