"""Where a written region can be read back for a remote update.

Each output strategy records, per region, a TransferSource describing how to
re-read exactly the bytes it wrote:

- DevicePartitionSource: a partition node of a block device
- FileWindowSource: a byte window inside a full image file
- NamedFileSource: a standalone region file the user asked for
- TransientFileSource: a temporary file that is deleted by discard()
"""

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, ClassVar

from rpi_packer.types import SourceKind

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class BoundedReader:
    """Read at most length bytes from a stream.

    Iterating yields chunks of up to CHUNK_SIZE bytes, which is the form an
    HTTP request body is streamed in.
    """

    def __init__(self, stream: BinaryIO, length: int) -> None:
        self._stream = stream
        self.length = length
        self.remaining = length

    def read(self, size: int = -1) -> bytes:
        if size < 0 or size > self.remaining:
            size = self.remaining
        if size == 0:
            return b""
        data = self._stream.read(size)
        self.remaining -= len(data)
        return data

    def __iter__(self) -> Iterator[bytes]:
        while chunk := self.read(CHUNK_SIZE):
            yield chunk
        if self.remaining:
            raise OSError(
                f"source ended {self.remaining} bytes short of {self.length}"
            )


@dataclass(frozen=True)
class _FileSource:
    path: Path
    length: int
    offset: int = 0

    kind: ClassVar[SourceKind]

    @contextmanager
    def open(self) -> Iterator[BoundedReader]:
        """Open the source positioned at its first byte."""
        with open(self.path, "rb") as f:
            if self.offset:
                f.seek(self.offset, os.SEEK_SET)
            yield BoundedReader(f, self.length)

    def discard(self) -> None:
        """Release the source; persistent sources are left alone."""

    def describe(self) -> str:
        if self.offset:
            return f"{self.path} [{self.offset}:+{self.length}]"
        return f"{self.path} ({self.length} bytes)"


@dataclass(frozen=True)
class DevicePartitionSource(_FileSource):
    kind: ClassVar[SourceKind] = SourceKind.DEVICE_PARTITION


@dataclass(frozen=True)
class FileWindowSource(_FileSource):
    kind: ClassVar[SourceKind] = SourceKind.FILE_WINDOW


@dataclass(frozen=True)
class NamedFileSource(_FileSource):
    kind: ClassVar[SourceKind] = SourceKind.NAMED_FILE


@dataclass(frozen=True)
class TransientFileSource(_FileSource):
    kind: ClassVar[SourceKind] = SourceKind.TRANSIENT_FILE

    def discard(self) -> None:
        """Delete the backing file."""
        try:
            self.path.unlink(missing_ok=True)
            logger.debug("Removed transient file %s", self.path)
        except OSError as e:
            logger.warning("Could not remove transient file %s: %s", self.path, e)


TransferSource = (
    DevicePartitionSource | FileWindowSource | NamedFileSource | TransientFileSource
)


__all__ = [
    "CHUNK_SIZE",
    "BoundedReader",
    "DevicePartitionSource",
    "FileWindowSource",
    "NamedFileSource",
    "TransferSource",
    "TransientFileSource",
]
