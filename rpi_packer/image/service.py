"""Pack service module.

This module provides the high-level pack API:
- pack(): Main entry point - build manifests, write the image, optionally update
- pack_image(): Scoped materialization; transient region files never outlive it
- prepare_regions(): Assemble the boot and root manifests
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from rpi_packer.config import get_settings
from rpi_packer.image.output import (
    MaterializedImage,
    OutputSelectionError,
    OutputStrategy,
    select_output,
)
from rpi_packer.image.regions import ManifestRegions, RegionSerializer
from rpi_packer.manifest import (
    ManifestError,
    build_boot_manifest,
    build_root_manifest,
    ensure_password_file,
    find_ca_bundle,
)
from rpi_packer.types import TargetKind
from rpi_packer.update import (
    HttpUpdateClient,
    UpdateClient,
    UpdateResult,
    UpdateTarget,
    resolve_update_url,
    run_update,
)

if TYPE_CHECKING:
    from rpi_packer.config import Settings

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., AbstractContextManager[UpdateClient]]


@dataclass
class PackOptions:
    """What to pack and where to put it.

    Attributes:
        root_dir: Host directory with the application binaries.
        overwrite: Block device or image file for a full image.
        target_storage_bytes: Image file size (file targets only).
        overwrite_boot: File or partition for the boot region alone.
        overwrite_root: File or partition for the root region alone.
        update: Update URL, or "yes" to derive it from the hostname.
        hostname: Host name of the target (defaults to settings).
        firmware_dir: Boot firmware directory (defaults to settings).
        kernel_dir: Kernel directory (defaults to settings).
    """

    root_dir: Path
    overwrite: Path | None = None
    target_storage_bytes: int | None = None
    overwrite_boot: Path | None = None
    overwrite_root: Path | None = None
    update: str | None = None
    hostname: str | None = None
    firmware_dir: Path | None = None
    kernel_dir: Path | None = None


@dataclass
class PackResult:
    """Result of a pack.

    Attributes:
        image: Sources and sizes of the written regions. Transient sources
            are already deleted when pack() returns.
        target_kind: Kind of the full-image target, None otherwise.
        hostname: Host name baked into the image.
        update_target: Where the update was sent, if any.
        update: Outcome of the remote update, if any.
    """

    image: MaterializedImage
    target_kind: TargetKind | None
    hostname: str
    update_target: UpdateTarget | None = None
    update: UpdateResult | None = None


def validate_options(options: PackOptions, update: str | None) -> None:
    """Reject option combinations that cannot produce a usable result.

    Raises:
        OutputSelectionError: Update requested with only one region written.
    """
    if update and (options.overwrite_boot is None) != (options.overwrite_root is None):
        raise OutputSelectionError(
            "an update needs both regions: pass both --overwrite-boot and "
            "--overwrite-root, or neither"
        )


def prepare_regions(
    options: PackOptions,
    settings: Settings,
    *,
    timestamp: datetime | None = None,
) -> tuple[ManifestRegions, str]:
    """Build the boot and root manifests.

    Returns:
        Tuple of (region serializer, HTTP password of the update agent).

    Raises:
        ManifestError: Inputs are missing or inconsistent.
    """
    if not options.root_dir.is_dir():
        raise ManifestError(
            f"root directory not found: {options.root_dir}", code="root_dir_missing"
        )
    kernel_dir = options.kernel_dir or settings.kernel_dir
    if kernel_dir is None:
        raise ManifestError(
            "no kernel directory; pass --kernel-dir or set RPI_PACKER_KERNEL_DIR",
            code="kernel_dir_missing",
        )

    password, password_file = ensure_password_file(settings.config_dir)
    ca_bundle = find_ca_bundle(settings.config_dir, settings.ca_bundle)

    root = build_root_manifest(
        options.root_dir,
        hostname=options.hostname or settings.hostname,
        ca_bundle=ca_bundle,
        password_file=password_file,
        timestamp=timestamp,
    )
    boot = build_boot_manifest(
        firmware_dir=options.firmware_dir or settings.firmware_dir,
        kernel_dir=kernel_dir,
        cmdline=settings.kernel_cmdline,
        timestamp=root.timestamp,
    )
    regions = ManifestRegions(
        boot,
        root,
        mksquashfs=settings.mksquashfs,
        tmp_dir=settings.tmp_dir,
    )
    return regions, password


@contextmanager
def pack_image(
    strategy: OutputStrategy, regions: RegionSerializer
) -> Iterator[MaterializedImage]:
    """Materialize the regions and yield their sources.

    Transient sources are deleted when the block exits, whether it
    completes or raises.
    """
    image = strategy.materialize(regions)
    try:
        yield image
    finally:
        image.discard()


def pack(
    options: PackOptions,
    *,
    settings: Settings | None = None,
    client_factory: ClientFactory = HttpUpdateClient,
    timestamp: datetime | None = None,
) -> PackResult:
    """Pack an image and optionally push it to a running device.

    Args:
        options: Pack options.
        settings: Application settings (optional).
        client_factory: Builds the update client from (target, timeout=...).
        timestamp: Build time (defaults to now).

    Returns:
        PackResult with region sources, sizes and update outcome.

    Raises:
        OutputSelectionError: Conflicting or incomplete targets.
        InvalidGeometryError: Image file size is missing or too small.
        ManifestError: Image inputs are missing.
        PackIOError: Writing the image failed.
        UpdateError: A remote update step failed.
    """
    if settings is None:
        settings = get_settings()

    update = options.update or settings.update_url
    validate_options(options, update)
    hostname = options.hostname or settings.hostname

    strategy = select_output(
        overwrite=options.overwrite,
        target_storage_bytes=options.target_storage_bytes,
        overwrite_boot=options.overwrite_boot,
        overwrite_root=options.overwrite_root,
        node_timeout=settings.device_node_timeout,
        poll_interval=settings.device_node_poll_interval,
        tmp_dir=settings.tmp_dir,
    )
    regions, password = prepare_regions(options, settings, timestamp=timestamp)

    update_target = None
    if update:
        update_target = resolve_update_url(
            update,
            hostname=hostname,
            password=password,
            username=settings.update_username,
        )

    logger.info(
        "Packing %s (target=%s, update=%s)",
        options.root_dir,
        options.overwrite or "regions",
        update_target.base_url if update_target else None,
    )

    with pack_image(strategy, regions) as image:
        result = PackResult(
            image=image,
            target_kind=strategy.target_kind,
            hostname=hostname,
            update_target=update_target,
        )
        if update_target is not None:
            if image.boot is None or image.root is None:
                raise OutputSelectionError("an update needs both regions")
            with client_factory(update_target, timeout=settings.update_timeout) as client:
                result.update = run_update(client, image.boot, image.root)

    return result


__all__ = [
    "PackOptions",
    "PackResult",
    "pack",
    "pack_image",
    "prepare_regions",
    "validate_options",
]
