"""Root file system serialization via mksquashfs.

This module handles:
- Composing the mksquashfs command line for a staged root tree
- Executing it with subprocess and surfacing failures as SquashfsError
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

# Keep the tail of mksquashfs output in error messages
_OUTPUT_TAIL_LINES = 20


class SquashfsError(Exception):
    """Raised when the root file system image cannot be built."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "squashfs_error",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code
        self.code = code


def compose_squashfs_command(
    source_dir: Path,
    dest: Path,
    *,
    mksquashfs: str = "mksquashfs",
    timestamp: int | None = None,
) -> list[str]:
    """Compose the mksquashfs command for a staged directory.

    Args:
        source_dir: Staged root tree.
        dest: Output image path (overwritten).
        mksquashfs: Executable name or path.
        timestamp: Fixed modification and file system time (seconds since
            the epoch) for reproducible images.

    Returns:
        Command as a list of arguments.
    """
    cmd = [
        mksquashfs,
        str(source_dir),
        str(dest),
        "-noappend",
        "-all-root",
        "-no-progress",
    ]
    if timestamp is not None:
        cmd += ["-mkfs-time", str(timestamp), "-all-time", str(timestamp)]
    return cmd


def make_squashfs(
    source_dir: Path,
    dest: Path,
    *,
    mksquashfs: str = "mksquashfs",
    timestamp: int | None = None,
    timeout: float | None = None,
) -> None:
    """Build a squashfs image from a staged directory.

    Raises:
        SquashfsError: mksquashfs is missing, times out or fails.
    """
    cmd = compose_squashfs_command(
        source_dir, dest, mksquashfs=mksquashfs, timestamp=timestamp
    )
    cmd_str = shlex.join(cmd)
    logger.info("Building root file system: %s", cmd_str)

    try:
        result = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError as e:
        raise SquashfsError(
            f"{mksquashfs} not found; install squashfs-tools",
            code="mksquashfs_not_found",
        ) from e
    except subprocess.TimeoutExpired as e:
        raise SquashfsError(
            f"mksquashfs timed out after {timeout} seconds",
            code="squashfs_timeout",
        ) from e
    except OSError as e:
        raise SquashfsError(
            f"Failed to execute mksquashfs: {e}",
            code="execution_error",
        ) from e

    if result.returncode != 0:
        tail = "\n".join((result.stdout or "").splitlines()[-_OUTPUT_TAIL_LINES:])
        logger.error("mksquashfs failed with exit code %d", result.returncode)
        raise SquashfsError(
            f"mksquashfs failed with exit code {result.returncode}: {tail}",
            exit_code=result.returncode,
        )

    logger.debug("mksquashfs output:\n%s", result.stdout)


__all__ = ["SquashfsError", "compose_squashfs_command", "make_squashfs"]
