"""Image content manifests.

This module handles:
- The immutable Manifest tree and its entry types
- ManifestBuilder and the boot/root manifest assembly
- Host runtime files (CA bundle, HTTP password)
- Staging a manifest into a directory
"""

from rpi_packer.manifest.builder import (
    CMDLINE_PATH,
    KERNEL_PATH,
    ManifestBuilder,
    ManifestError,
    build_boot_manifest,
    build_root_manifest,
)
from rpi_packer.manifest.models import (
    DirectoryEntry,
    Entry,
    HostFileEntry,
    LiteralFileEntry,
    Manifest,
    SymlinkEntry,
)
from rpi_packer.manifest.runtime import ensure_password_file, find_ca_bundle
from rpi_packer.manifest.staging import stage_manifest

__all__ = [
    "CMDLINE_PATH",
    "KERNEL_PATH",
    "DirectoryEntry",
    "Entry",
    "HostFileEntry",
    "LiteralFileEntry",
    "Manifest",
    "ManifestBuilder",
    "ManifestError",
    "SymlinkEntry",
    "build_boot_manifest",
    "build_root_manifest",
    "ensure_password_file",
    "find_ca_bundle",
    "stage_manifest",
]
