"""Thin CLI wrapper for rpi_packer.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from rpi_packer import __version__
from rpi_packer.config import get_settings, print_settings_json
from rpi_packer.fs import FatError, MBRError, SquashfsError
from rpi_packer.image import (
    MissingBootFileError,
    OutputSelectionError,
    PackIOError,
    StorageTarget,
)
from rpi_packer.image.device import DeviceValidationError, partition_path
from rpi_packer.layout import InvalidGeometryError, plan_layout
from rpi_packer.manifest import ManifestError
from rpi_packer.manifest.runtime import PASSWORD_FILE_NAME
from rpi_packer.types import TargetKind
from rpi_packer.update import UpdateError, UpdateRequestError

app = typer.Typer(
    name="rpi-packer",
    help="Raspberry Pi image packer - build SD card images and update devices over the network",
    no_args_is_help=True,
)
console = Console()

PACK_ERRORS = (
    DeviceValidationError,
    FatError,
    InvalidGeometryError,
    ManifestError,
    MBRError,
    MissingBootFileError,
    OutputSelectionError,
    PackIOError,
    SquashfsError,
    UpdateError,
    UpdateRequestError,
)


def configure_logging(level: str) -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"rpi-packer version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Raspberry Pi image packer - build SD card images and update devices over the network."""
    configure_logging(get_settings().log_level)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True)
        return

    def show(value: object, default: str = "(not set)") -> str:
        return str(value) if value is not None else default

    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Config directory:    {settings.config_dir}")
    console.print(f"  Temp directory:      {show(settings.tmp_dir, '(system default)')}")
    console.print(f"  Firmware directory:  {show(settings.firmware_dir)}")
    console.print(f"  Kernel directory:    {show(settings.kernel_dir)}")
    console.print(f"  CA bundle:           {show(settings.ca_bundle, '(search host)')}")
    console.print(f"  mksquashfs:          {settings.mksquashfs}")
    console.print()
    console.print("[bold]Image:[/bold]")
    console.print(f"  Hostname:            {settings.hostname}")
    console.print(f"  Kernel cmdline:      {settings.kernel_cmdline}")
    console.print()
    console.print("[bold]Update:[/bold]")
    console.print(f"  Update URL:          {show(settings.update_url)}")
    console.print(f"  Username:            {settings.update_username}")
    console.print(f"  Request timeout:     {settings.update_timeout}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Device node timeout: {settings.device_node_timeout}")


@app.command()
def layout(
    target_storage_bytes: Annotated[
        int | None,
        typer.Option(
            "--target-storage-bytes",
            help="Medium size in bytes (validated and used to size partition 4)",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the partition layout of a packed image."""
    try:
        region_layout = plan_layout(target_storage_bytes)
    except InvalidGeometryError as e:
        console.print(f"[red]Invalid geometry: {e.message}[/red]")
        raise typer.Exit(code=1) from None

    partitions = region_layout.partitions()
    if json_output:
        output = {
            "boot_offset": region_layout.boot_offset,
            "boot_capacity": region_layout.boot_capacity,
            "root_offset": region_layout.root_offset,
            "root_slot_size": region_layout.root_slot_size,
            "total_size": region_layout.total_size,
            "partitions": [
                {
                    "number": number,
                    "type": f"0x{p.type_id:02x}",
                    "bootable": p.bootable,
                    "start_lba": p.start_lba,
                    "sector_count": p.sector_count,
                }
                for number, p in enumerate(partitions, start=1)
            ],
        }
        console.print(json.dumps(output, indent=2), soft_wrap=True)
        return

    names = ["boot (FAT16)", "root A", "root B", "perm"]
    console.print("[bold]Partition layout:[/bold]")
    for number, p in enumerate(partitions, start=1):
        flag = " *" if p.bootable else ""
        console.print(
            f"  {number}  {names[number - 1]:<13} type 0x{p.type_id:02x}  "
            f"start {p.start_lba:>8}  sectors {p.sector_count:>9}{flag}"
        )
    if len(partitions) < 4:
        console.print("  4  perm          sized to the medium when written")


@app.command()
def pack(
    root_dir: Annotated[
        Path, typer.Argument(help="Directory with the binaries to put on the root file system")
    ],
    overwrite: Annotated[
        Path | None,
        typer.Option(
            "--overwrite",
            "-o",
            help="Block device (e.g., /dev/sdX) or image file to write a full image to",
        ),
    ] = None,
    target_storage_bytes: Annotated[
        int | None,
        typer.Option(
            "--target-storage-bytes",
            help="Image file size in bytes (required when --overwrite is a file)",
        ),
    ] = None,
    overwrite_boot: Annotated[
        Path | None,
        typer.Option("--overwrite-boot", help="File or partition to write the boot region to"),
    ] = None,
    overwrite_root: Annotated[
        Path | None,
        typer.Option("--overwrite-root", help="File or partition to write the root region to"),
    ] = None,
    update: Annotated[
        str | None,
        typer.Option(
            "--update",
            "-u",
            help='Update a running device: its URL, or "yes" for http://<hostname>/',
        ),
    ] = None,
    hostname: Annotated[
        str | None,
        typer.Option("--hostname", help="Host name of the target (default from settings)"),
    ] = None,
    firmware_dir: Annotated[
        Path | None,
        typer.Option("--firmware-dir", help="Boot firmware directory"),
    ] = None,
    kernel_dir: Annotated[
        Path | None,
        typer.Option("--kernel-dir", help="Directory with vmlinuz and *.dtb"),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Skip confirmation prompts"),
    ] = False,
) -> None:
    """Pack an image and write it, update a device with it, or both.

    With --overwrite on a block device the whole device is repartitioned.
    Without --overwrite, --overwrite-boot and --overwrite-root write single
    regions; with --update the image is sent to a running device.
    """
    from rpi_packer.image.service import PackOptions
    from rpi_packer.image.service import pack as run_pack

    settings = get_settings()

    if overwrite is None and overwrite_boot is None and overwrite_root is None:
        if not (update or settings.update_url):
            console.print(
                "[red]Nothing to do: pass --overwrite, --overwrite-boot, "
                "--overwrite-root or --update[/red]"
            )
            raise typer.Exit(code=1)

    target_kind = None
    if overwrite is not None:
        target_kind = StorageTarget.detect(overwrite).kind
    if target_kind == TargetKind.DEVICE and not force:
        console.print(
            f"[bold red]WARNING:[/bold red] This will REPARTITION and OVERWRITE {overwrite}"
        )
        confirm = typer.confirm("Are you sure you want to continue?", default=False)
        if not confirm:
            console.print("[yellow]Aborted[/yellow]")
            raise typer.Exit(code=0)

    options = PackOptions(
        root_dir=root_dir,
        overwrite=overwrite,
        target_storage_bytes=target_storage_bytes,
        overwrite_boot=overwrite_boot,
        overwrite_root=overwrite_root,
        update=update,
        hostname=hostname,
        firmware_dir=firmware_dir,
        kernel_dir=kernel_dir,
    )

    try:
        result = run_pack(options, settings=settings)
    except UpdateError as e:
        console.print(f"[red]Update failed at {e.step.value}: {e.message}[/red]")
        if e.completed:
            done = ", ".join(step.value for step in e.completed)
            console.print(f"  Completed steps: {done}")
        raise typer.Exit(code=1) from None
    except PACK_ERRORS as e:
        console.print(f"[red]Pack failed: {getattr(e, 'message', e)}[/red]")
        raise typer.Exit(code=1) from None

    console.print("[green]✓ Pack succeeded[/green]")
    if result.image.boot is not None:
        console.print(f"  Boot region: {result.image.boot_size} bytes")
    if result.image.root is not None:
        console.print(f"  Root region: {result.image.root_size} bytes")
    if overwrite is not None:
        console.print(f"  Written to:  {overwrite}")

    if result.update is not None and result.update_target is not None:
        console.print(
            f"[green]✓ Updated {result.update_target.base_url}, device is rebooting[/green]"
        )

    console.print()
    console.print(f"Web interface: http://{result.hostname}/")
    console.print(
        f"  User {settings.update_username}, password in "
        f"{settings.config_dir / PASSWORD_FILE_NAME}"
    )
    if result.target_kind == TargetKind.DEVICE and overwrite is not None:
        perm = partition_path(str(overwrite), 4)
        console.print("To use the persistent partition, create a file system on it:")
        console.print(f"  sudo mkfs.ext4 {perm}")


if __name__ == "__main__":
    app()
