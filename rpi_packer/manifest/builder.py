"""Manifest assembly for the boot and root regions.

This module handles:
- Accumulating entries in a ManifestBuilder and freezing them into a Manifest
- Importing a host directory tree (application binaries)
- Injecting the runtime files every root file system carries
- Collecting firmware, kernel and cmdline.txt for the boot file system
"""

from __future__ import annotations

import logging
import stat
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath

from rpi_packer.manifest.models import (
    DEFAULT_DIR_MODE,
    DirectoryEntry,
    Entry,
    HostFileEntry,
    LiteralFileEntry,
    Manifest,
    SymlinkEntry,
)

logger = logging.getLogger(__name__)

# Boot file system contents
FIRMWARE_GLOBS = ("*.bin", "*.dat", "*.elf")
KERNEL_GLOBS = ("vmlinuz", "*.dtb")
KERNEL_PATH = "/vmlinuz"
CMDLINE_PATH = "/cmdline.txt"

# Root file system skeleton
ROOT_DIRECTORIES = ("dev", "etc", "proc", "sys", "tmp", "perm")
HOSTS_CONTENT = "127.0.0.1 localhost\n::1 localhost\n"
RESOLV_CONF_TARGET = "/tmp/resolv.conf"
HOST_LOCALTIME = Path("/etc/localtime")
PASSWORD_FILE_PATH = "/etc/gokr-pw.txt"
CA_BUNDLE_PATH = "/etc/ssl/ca-bundle.pem"


class ManifestError(Exception):
    """Raised when a manifest cannot be assembled."""

    def __init__(self, message: str, code: str = "manifest_error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


@dataclass
class _PendingDir:
    mode: int = DEFAULT_DIR_MODE
    children: dict[str, _PendingDir | Entry] = field(default_factory=dict)


class ManifestBuilder:
    """Accumulate entries, then freeze them with build().

    Paths are absolute POSIX paths inside the region. Parent directories are
    created on demand. Adding the same path twice is an error, except for
    directories, which merge.
    """

    def __init__(self, timestamp: datetime | None = None) -> None:
        self.timestamp = timestamp or datetime.now(timezone.utc).replace(microsecond=0)
        self._root = _PendingDir()
        self._built = False

    def _parent(self, path: str) -> tuple[_PendingDir, str]:
        if self._built:
            raise ManifestError("manifest already built")
        parts = PurePosixPath(path).parts
        if len(parts) < 2 or parts[0] != "/":
            raise ManifestError(f"expected an absolute path, got {path!r}")
        node = self._root
        for part in parts[1:-1]:
            child = node.children.get(part)
            if child is None:
                child = _PendingDir()
                node.children[part] = child
            elif not isinstance(child, _PendingDir):
                raise ManifestError(f"{part} in {path} is not a directory")
            node = child
        return node, parts[-1]

    def _add(self, path: str, entry: Entry) -> None:
        parent, name = self._parent(path)
        if name in parent.children:
            raise ManifestError(f"{path} added twice", code="duplicate_path")
        parent.children[name] = entry

    def mkdir(self, path: str, mode: int = DEFAULT_DIR_MODE) -> None:
        """Add a directory; an existing directory is kept."""
        parent, name = self._parent(path)
        existing = parent.children.get(name)
        if existing is None:
            parent.children[name] = _PendingDir(mode=mode)
        elif not isinstance(existing, _PendingDir):
            raise ManifestError(f"{path} already exists and is not a directory")

    def add_host_file(self, path: str, source: Path, mode: int | None = None) -> None:
        """Add a file copied from the host."""
        if not source.is_file():
            raise ManifestError(f"host file not found: {source}", code="host_file_missing")
        self._add(path, HostFileEntry(name=PurePosixPath(path).name, source=source, mode=mode))

    def add_literal(self, path: str, content: str | bytes, mode: int = 0o644) -> None:
        """Add a file with inline content."""
        data = content.encode("utf-8") if isinstance(content, str) else content
        self._add(path, LiteralFileEntry(name=PurePosixPath(path).name, content=data, mode=mode))

    def add_symlink(self, path: str, target: str) -> None:
        """Add a symbolic link."""
        self._add(path, SymlinkEntry(name=PurePosixPath(path).name, target=target))

    def add_host_tree(self, dest: str, source_dir: Path) -> int:
        """Import a host directory tree below dest.

        Symlinks are kept as links. Entries are added in sorted order so the
        resulting manifest does not depend on directory listing order.

        Returns:
            Number of files and links added.

        Raises:
            ManifestError: source_dir is missing or contains special files.
        """
        if not source_dir.is_dir():
            raise ManifestError(f"directory not found: {source_dir}", code="host_dir_missing")

        added = 0
        base = dest.rstrip("/")
        for item in sorted(source_dir.rglob("*")):
            rel = item.relative_to(source_dir).as_posix()
            path = f"{base}/{rel}"
            st = item.lstat()
            if stat.S_ISLNK(st.st_mode):
                self.add_symlink(path, str(item.readlink()))
                added += 1
            elif stat.S_ISDIR(st.st_mode):
                self.mkdir(path, mode=stat.S_IMODE(st.st_mode))
            elif stat.S_ISREG(st.st_mode):
                self.add_host_file(path, item, mode=stat.S_IMODE(st.st_mode))
                added += 1
            else:
                raise ManifestError(f"unsupported file type: {item}", code="unsupported_file")

        logger.debug("Imported %d entries from %s", added, source_dir)
        return added

    def build(self) -> Manifest:
        """Freeze the accumulated entries into a Manifest."""

        def freeze(name: str, pending: _PendingDir) -> DirectoryEntry:
            children: list[Entry] = []
            for child_name, child in pending.children.items():
                if isinstance(child, _PendingDir):
                    children.append(freeze(child_name, child))
                else:
                    children.append(child)
            return DirectoryEntry(name=name, children=tuple(children), mode=pending.mode)

        manifest = Manifest(root=freeze("", self._root), timestamp=self.timestamp)
        self._built = True
        return manifest


def build_root_manifest(
    root_dir: Path,
    *,
    hostname: str,
    ca_bundle: Path,
    password_file: Path,
    localtime: Path = HOST_LOCALTIME,
    timestamp: datetime | None = None,
) -> Manifest:
    """Assemble the root file system manifest.

    Args:
        root_dir: Host directory with the application binaries.
        hostname: Host name written to /etc/hostname.
        ca_bundle: Host CA bundle embedded as /etc/ssl/ca-bundle.pem.
        password_file: HTTP password file embedded for the update agent.
        localtime: Host time zone file (skipped if absent).
        timestamp: Build time for literal entries.

    Returns:
        The finalized Manifest.
    """
    builder = ManifestBuilder(timestamp)
    builder.add_host_tree("/", root_dir)

    for directory in ROOT_DIRECTORIES:
        builder.mkdir(f"/{directory}")

    if localtime.is_file():
        builder.add_host_file("/etc/localtime", localtime)
    else:
        logger.warning("%s not found, image will use UTC", localtime)
    builder.add_symlink("/etc/resolv.conf", RESOLV_CONF_TARGET)
    builder.add_literal("/etc/hosts", HOSTS_CONTENT)
    builder.add_literal("/etc/hostname", hostname)
    builder.add_host_file(CA_BUNDLE_PATH, ca_bundle)
    builder.add_host_file(PASSWORD_FILE_PATH, password_file, mode=0o600)

    manifest = builder.build()
    logger.info("Root manifest: %d entries from %s", len(manifest), root_dir)
    return manifest


def build_boot_manifest(
    *,
    firmware_dir: Path | None,
    kernel_dir: Path,
    cmdline: str,
    timestamp: datetime | None = None,
) -> Manifest:
    """Assemble the boot file system manifest.

    Raises:
        ManifestError: kernel_dir holds no vmlinuz.
    """
    builder = ManifestBuilder(timestamp)

    sources: list[Path] = []
    if firmware_dir is not None:
        if not firmware_dir.is_dir():
            raise ManifestError(f"firmware directory not found: {firmware_dir}")
        for pattern in FIRMWARE_GLOBS:
            sources.extend(sorted(firmware_dir.glob(pattern)))
    if not kernel_dir.is_dir():
        raise ManifestError(f"kernel directory not found: {kernel_dir}")
    for pattern in KERNEL_GLOBS:
        sources.extend(sorted(kernel_dir.glob(pattern)))

    if not any(p.name == PurePosixPath(KERNEL_PATH).name for p in sources):
        raise ManifestError(
            f"no vmlinuz found in {kernel_dir}", code="kernel_missing"
        )

    for source in sources:
        builder.add_host_file(f"/{source.name}", source)
    builder.add_literal(CMDLINE_PATH, cmdline)

    manifest = builder.build()
    logger.info("Boot manifest: %d files", len(manifest))
    return manifest


__all__ = [
    "CMDLINE_PATH",
    "FIRMWARE_GLOBS",
    "KERNEL_GLOBS",
    "KERNEL_PATH",
    "ManifestBuilder",
    "ManifestError",
    "build_boot_manifest",
    "build_root_manifest",
]
