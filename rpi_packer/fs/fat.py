"""FAT file system codec for the boot region.

This module handles:
- Writing a compact FAT16 image from an in-memory tree (FatWriter)
- Reading FAT12/16/32 images and locating file extents (FatReader)

The writer allocates clusters sequentially in insertion order, so a file's
data is contiguous and its extent is fully described by its first cluster.
Output is a pure function of the added entries: no clock or random input is
consulted.

The reader only ever issues absolute seeks (io.SEEK_SET) against its
stream, which lets it operate on a region embedded in a larger image through
rpi_packer.image.windowed.WindowedReader.
"""

from __future__ import annotations

import io
import logging
import math
import struct
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import BinaryIO

logger = logging.getLogger(__name__)

SECTOR_SIZE = 512
SECTORS_PER_CLUSTER = 4
CLUSTER_SIZE = SECTOR_SIZE * SECTORS_PER_CLUSTER
RESERVED_SECTORS = 1
NUM_FATS = 2
ROOT_ENTRIES = 512
DIR_ENTRY_SIZE = 32
ROOT_DIR_SECTORS = ROOT_ENTRIES * DIR_ENTRY_SIZE // SECTOR_SIZE

# Cluster counts decide the FAT type; stay clear of the FAT12 boundary (4085).
MIN_FAT16_CLUSTERS = 4200
MAX_FAT16_CLUSTERS = 65524

ATTR_READ_ONLY = 0x01
ATTR_HIDDEN = 0x02
ATTR_SYSTEM = 0x04
ATTR_VOLUME_ID = 0x08
ATTR_DIRECTORY = 0x10
ATTR_ARCHIVE = 0x20
ATTR_LONG_NAME = ATTR_READ_ONLY | ATTR_HIDDEN | ATTR_SYSTEM | ATTR_VOLUME_ID

# NT reserved byte flags for all-lowercase 8.3 names
NT_LOWER_BASE = 0x08
NT_LOWER_EXT = 0x10

LFN_CHARS_PER_ENTRY = 13
LFN_LAST_ENTRY = 0x40

DEFAULT_VOLUME_LABEL = "RPI-BOOT"
COPY_CHUNK_SIZE = 1024 * 1024

_DIR_ENTRY = struct.Struct("<11sBBBHHHHHHHI")
_SHORT_NAME_CHARS = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789!#$%&'()-@^_`{}~"
)
_FAT_EPOCH = datetime(1980, 1, 1)


class FatError(Exception):
    """Base error for FAT encoding and decoding."""

    def __init__(self, message: str, code: str = "fat_error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class FatFormatError(FatError):
    """Image does not contain a readable FAT file system."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="fat_format_error")


class FatPathNotFoundError(FatError):
    """Requested path does not exist in the image."""

    def __init__(self, path: str) -> None:
        super().__init__(f"{path} not found in FAT image", code="fat_path_not_found")
        self.path = path


class FatCapacityError(FatError):
    """Content does not fit the FAT image limits."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="fat_capacity_exceeded")


# ---------------------------------------------------------------------------
# Name and timestamp encoding
# ---------------------------------------------------------------------------


def _split_name(name: str) -> tuple[str, str]:
    base, dot, ext = name.rpartition(".")
    if not dot:
        return name, ""
    return base, ext


def _uniform_case(part: str) -> bool | None:
    """Return True for all-lowercase, False for all-uppercase, None if mixed."""
    letters = [c for c in part if c.isalpha()]
    if not letters:
        return False
    if all(c.islower() for c in letters):
        return True
    if all(c.isupper() for c in letters):
        return False
    return None


def plain_short_name(name: str) -> tuple[bytes, int] | None:
    """Encode name as an 8.3 entry if it needs no long-name entries.

    Returns:
        (11-byte short name, NT case flags) or None if a long name is needed.
    """
    if name.startswith(".") or name.count(".") > 1:
        return None
    base, ext = _split_name(name)
    if not base or len(base) > 8 or len(ext) > 3:
        return None
    if not all(c.upper() in _SHORT_NAME_CHARS for c in base + ext):
        return None

    base_lower = _uniform_case(base)
    ext_lower = _uniform_case(ext)
    if base_lower is None or ext_lower is None:
        return None

    flags = (NT_LOWER_BASE if base_lower else 0) | (NT_LOWER_EXT if ext_lower else 0)
    short = base.upper().ljust(8) + ext.upper().ljust(3)
    return short.encode("ascii"), flags


def generated_short_name(name: str, taken: set[bytes]) -> bytes:
    """Derive a unique BASE~N.EXT alias for a long name."""

    def clean(part: str) -> str:
        out = []
        for c in part.upper():
            if c in (" ", "."):
                continue
            out.append(c if c in _SHORT_NAME_CHARS else "_")
        return "".join(out)

    base, ext = _split_name(name.lstrip("."))
    base, ext = clean(base) or "_", clean(ext)[:3]

    for n in range(1, 1_000_000):
        tail = f"~{n}"
        candidate = (base[: 8 - len(tail)] + tail).ljust(8) + ext.ljust(3)
        encoded = candidate.encode("ascii")
        if encoded not in taken:
            return encoded
    raise FatCapacityError(f"cannot derive a unique short name for {name}")


def lfn_checksum(short_name: bytes) -> int:
    """Checksum of an 11-byte short name, stored in each long-name entry."""
    total = 0
    for b in short_name:
        total = (((total & 1) << 7) + (total >> 1) + b) & 0xFF
    return total


def encode_lfn_entries(name: str, short_name: bytes) -> list[bytes]:
    """Encode the long-name entries for name, in on-disk order."""
    raw = name.encode("utf-16-le")
    units = list(struct.unpack(f"<{len(raw) // 2}H", raw))
    if len(units) > 255:
        raise FatCapacityError(f"file name too long: {name}")
    if len(units) % LFN_CHARS_PER_ENTRY:
        units.append(0x0000)
    while len(units) % LFN_CHARS_PER_ENTRY:
        units.append(0xFFFF)

    checksum = lfn_checksum(short_name)
    count = len(units) // LFN_CHARS_PER_ENTRY
    entries = []
    for seq in range(count, 0, -1):
        chunk = units[(seq - 1) * LFN_CHARS_PER_ENTRY : seq * LFN_CHARS_PER_ENTRY]
        order = seq | (LFN_LAST_ENTRY if seq == count else 0)
        entries.append(
            struct.pack(
                "<B5HBBB6HH2H",
                order,
                *chunk[0:5],
                ATTR_LONG_NAME,
                0,
                checksum,
                *chunk[5:11],
                0,
                *chunk[11:13],
            )
        )
    return entries


def encode_timestamp(when: datetime) -> tuple[int, int]:
    """Encode a datetime as FAT (date, time) words."""
    if when.replace(tzinfo=None) < _FAT_EPOCH:
        when = _FAT_EPOCH
    date = ((when.year - 1980) << 9) | (when.month << 5) | when.day
    time = (when.hour << 11) | (when.minute << 5) | (when.second // 2)
    return date, time


def encode_dir_entry(
    short_name: bytes,
    attr: int,
    first_cluster: int,
    size: int,
    when: datetime,
    nt_flags: int = 0,
) -> bytes:
    """Encode a 32-byte short directory entry."""
    date, time = encode_timestamp(when)
    return _DIR_ENTRY.pack(
        short_name,
        attr,
        nt_flags,
        0,
        time,
        date,
        date,
        (first_cluster >> 16) & 0xFFFF,
        time,
        date,
        first_cluster & 0xFFFF,
        size,
    )


# ---------------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------------


@dataclass
class _Node:
    name: str
    mtime: datetime
    is_dir: bool = False
    content: bytes | Path | None = None
    size: int = 0
    short_name: bytes = b""
    nt_flags: int = 0
    lfn_entries: list[bytes] = field(default_factory=list)
    children: dict[str, _Node] = field(default_factory=dict)
    taken: set[bytes] = field(default_factory=set)
    first_cluster: int = 0
    cluster_count: int = 0

    @property
    def slot_count(self) -> int:
        return len(self.lfn_entries) + 1

    def table_entries(self) -> int:
        # "." and ".." plus every child's slots
        return 2 + sum(child.slot_count for child in self.children.values())


class FatWriter:
    """Build a FAT16 image from files added in order.

    Example:
        writer = FatWriter(hidden_sectors=8192)
        writer.add_file("/vmlinuz", Path("kernel/vmlinuz"), mtime)
        writer.add_file("/cmdline.txt", b"console=ttyAMA0", mtime)
        size = writer.write_to(stream)
    """

    def __init__(
        self,
        *,
        hidden_sectors: int = 0,
        max_size: int | None = None,
        volume_id: int = 0,
        volume_label: str = DEFAULT_VOLUME_LABEL,
    ) -> None:
        self.hidden_sectors = hidden_sectors
        self.max_size = max_size
        self.volume_id = volume_id & 0xFFFFFFFF
        self.volume_label = volume_label
        self._root = _Node(name="", mtime=_FAT_EPOCH, is_dir=True)

    def mkdir(self, path: str, mtime: datetime) -> None:
        """Add a directory (parents are created as needed)."""
        parent = self._lookup_parent(path, mtime, create=True)
        name = PurePosixPath(path).name
        if name in parent.children:
            if not parent.children[name].is_dir:
                raise FatError(f"{path} already exists as a file")
            return
        self._attach(parent, _Node(name=name, mtime=mtime, is_dir=True))

    def add_file(self, path: str, content: bytes | Path, mtime: datetime) -> None:
        """Add a file from literal bytes or a host path."""
        parent = self._lookup_parent(path, mtime, create=True)
        name = PurePosixPath(path).name
        if name in parent.children:
            raise FatError(f"{path} added twice")
        if isinstance(content, Path):
            size = content.stat().st_size
        else:
            size = len(content)
        if size > 0xFFFFFFFF:
            raise FatCapacityError(f"{path} exceeds the FAT file size limit")
        self._attach(parent, _Node(name=name, mtime=mtime, content=content, size=size))

    def _lookup_parent(self, path: str, mtime: datetime, create: bool = False) -> _Node:
        parts = PurePosixPath(path).parts
        if not parts or parts[0] != "/" or len(parts) < 2:
            raise FatError(f"expected an absolute file path, got {path!r}")
        node = self._root
        for part in parts[1:-1]:
            child = node.children.get(part)
            if child is None:
                if not create:
                    raise FatPathNotFoundError(path)
                child = _Node(name=part, mtime=mtime, is_dir=True)
                self._attach(node, child)
            elif not child.is_dir:
                raise FatError(f"{part} in {path} is a file")
            node = child
        return node

    def _attach(self, parent: _Node, node: _Node) -> None:
        plain = plain_short_name(node.name)
        if plain is not None and plain[0] not in parent.taken:
            node.short_name, node.nt_flags = plain
        else:
            node.short_name = generated_short_name(node.name, parent.taken)
            node.lfn_entries = encode_lfn_entries(node.name, node.short_name)
        parent.taken.add(node.short_name)
        parent.children[node.name] = node

    def _allocate(self) -> list[_Node]:
        order: list[_Node] = []
        next_cluster = 2

        def visit(directory: _Node) -> None:
            nonlocal next_cluster
            for child in directory.children.values():
                if child.is_dir:
                    table_bytes = child.table_entries() * DIR_ENTRY_SIZE
                    child.cluster_count = max(1, math.ceil(table_bytes / CLUSTER_SIZE))
                else:
                    child.cluster_count = math.ceil(child.size / CLUSTER_SIZE)
                if child.cluster_count:
                    child.first_cluster = next_cluster
                    next_cluster += child.cluster_count
                    order.append(child)
            for child in directory.children.values():
                if child.is_dir:
                    visit(child)

        visit(self._root)
        return order

    def _dir_table(self, directory: _Node, parent: _Node | None) -> bytes:
        out = bytearray()
        if parent is not None:
            out += encode_dir_entry(
                b".          ", ATTR_DIRECTORY, directory.first_cluster, 0, directory.mtime
            )
            out += encode_dir_entry(
                b"..         ",
                ATTR_DIRECTORY,
                parent.first_cluster if parent is not self._root else 0,
                0,
                directory.mtime,
            )
        for child in directory.children.values():
            for lfn in child.lfn_entries:
                out += lfn
            out += encode_dir_entry(
                child.short_name,
                ATTR_DIRECTORY if child.is_dir else ATTR_ARCHIVE,
                child.first_cluster,
                0 if child.is_dir else child.size,
                child.mtime,
                child.nt_flags,
            )
        return bytes(out)

    def _boot_sector(self, total_sectors: int, fat_sectors: int) -> bytes:
        sector = bytearray(SECTOR_SIZE)
        sector[0:3] = b"\xeb\x3c\x90"
        sector[3:11] = b"RPIPACK "
        struct.pack_into(
            "<HBHBHHBHHHII",
            sector,
            11,
            SECTOR_SIZE,
            SECTORS_PER_CLUSTER,
            RESERVED_SECTORS,
            NUM_FATS,
            ROOT_ENTRIES,
            total_sectors if total_sectors < 0x10000 else 0,
            0xF8,
            fat_sectors,
            32,  # sectors per track
            64,  # heads
            self.hidden_sectors,
            total_sectors if total_sectors >= 0x10000 else 0,
        )
        struct.pack_into("<BBBI", sector, 36, 0x80, 0, 0x29, self.volume_id)
        sector[43:54] = self.volume_label.upper()[:11].ljust(11).encode("ascii")
        sector[54:62] = b"FAT16   "
        sector[510:512] = b"\x55\xaa"
        return bytes(sector)

    def write_to(self, stream: BinaryIO) -> int:
        """Serialize the image to stream at its current position.

        Returns:
            Number of bytes written.

        Raises:
            FatCapacityError: Content exceeds FAT16 or max_size limits.
            FatError: A host file changed size while being written.
        """
        if self._root.table_entries() - 2 > ROOT_ENTRIES:
            raise FatCapacityError(
                f"root directory holds at most {ROOT_ENTRIES} entries"
            )

        order = self._allocate()
        used = sum(node.cluster_count for node in order)
        clusters = max(used, MIN_FAT16_CLUSTERS)
        if clusters > MAX_FAT16_CLUSTERS:
            raise FatCapacityError(
                f"boot content needs {used} clusters, FAT16 allows {MAX_FAT16_CLUSTERS}"
            )

        fat_sectors = math.ceil((clusters + 2) * 2 / SECTOR_SIZE)
        total_sectors = (
            RESERVED_SECTORS
            + NUM_FATS * fat_sectors
            + ROOT_DIR_SECTORS
            + clusters * SECTORS_PER_CLUSTER
        )
        image_size = total_sectors * SECTOR_SIZE
        if self.max_size is not None and image_size > self.max_size:
            raise FatCapacityError(
                f"FAT image needs {image_size} bytes, only {self.max_size} available"
            )

        logger.debug(
            "Writing FAT16 image: %d clusters (%d used), %d bytes",
            clusters,
            used,
            image_size,
        )

        fat = [0] * (clusters + 2)
        fat[0] = 0xFFF8
        fat[1] = 0xFFFF
        for node in order:
            last = node.first_cluster + node.cluster_count - 1
            for cluster in range(node.first_cluster, last):
                fat[cluster] = cluster + 1
            fat[last] = 0xFFFF
        fat_bytes = struct.pack(f"<{len(fat)}H", *fat).ljust(
            fat_sectors * SECTOR_SIZE, b"\x00"
        )

        written = 0
        written += stream.write(self._boot_sector(total_sectors, fat_sectors))
        for _ in range(NUM_FATS):
            written += stream.write(fat_bytes)
        root_table = self._dir_table(self._root, None)
        written += stream.write(root_table.ljust(ROOT_DIR_SECTORS * SECTOR_SIZE, b"\x00"))

        parents = self._parents()
        for node in order:
            span = node.cluster_count * CLUSTER_SIZE
            if node.is_dir:
                data = self._dir_table(node, parents[id(node)])
                written += stream.write(data.ljust(span, b"\x00"))
            elif isinstance(node.content, Path):
                written += self._copy_host_file(node.content, node.size, stream, span)
            else:
                written += stream.write((node.content or b"").ljust(span, b"\x00"))

        remaining = (clusters - used) * CLUSTER_SIZE
        zeros = bytes(COPY_CHUNK_SIZE)
        while remaining > 0:
            n = min(remaining, COPY_CHUNK_SIZE)
            written += stream.write(zeros[:n])
            remaining -= n

        return written

    def _parents(self) -> dict[int, _Node]:
        parents: dict[int, _Node] = {}

        def visit(directory: _Node) -> None:
            for child in directory.children.values():
                parents[id(child)] = directory
                if child.is_dir:
                    visit(child)

        visit(self._root)
        return parents

    @staticmethod
    def _copy_host_file(path: Path, size: int, stream: BinaryIO, span: int) -> int:
        written = 0
        with path.open("rb") as src:
            while chunk := src.read(COPY_CHUNK_SIZE):
                written += stream.write(chunk)
        if written != size:
            raise FatError(
                f"{path} changed size while packing ({size} -> {written} bytes)"
            )
        return written + stream.write(bytes(span - written))


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FatEntry:
    """A directory entry as seen by the reader."""

    name: str
    is_dir: bool
    first_cluster: int
    size: int


class FatReader:
    """Read-only access to a FAT12/16/32 image.

    Only absolute seeks are issued against the stream.
    """

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        sector = self._read_at(0, SECTOR_SIZE)
        if len(sector) < SECTOR_SIZE or sector[510:512] != b"\x55\xaa":
            raise FatFormatError("missing boot sector signature")

        (
            self.bytes_per_sector,
            self.sectors_per_cluster,
            reserved,
            self.num_fats,
            root_entries,
            total16,
            _media,
            fat_size16,
        ) = struct.unpack_from("<HBHBHHBH", sector, 11)
        (total32, fat_size32) = struct.unpack_from("<II", sector, 32)
        (self.root_cluster,) = struct.unpack_from("<I", sector, 44)

        if self.bytes_per_sector not in (512, 1024, 2048, 4096):
            raise FatFormatError(f"invalid bytes per sector: {self.bytes_per_sector}")
        spc = self.sectors_per_cluster
        if spc == 0 or spc & (spc - 1):
            raise FatFormatError(f"invalid sectors per cluster: {spc}")
        if self.num_fats == 0:
            raise FatFormatError("no FAT copies")

        fat_size = fat_size16 or fat_size32
        total_sectors = total16 or total32
        root_dir_sectors = math.ceil(root_entries * DIR_ENTRY_SIZE / self.bytes_per_sector)

        self.cluster_size = spc * self.bytes_per_sector
        self.fat_offset = reserved * self.bytes_per_sector
        self.root_dir_offset = (reserved + self.num_fats * fat_size) * self.bytes_per_sector
        self.root_dir_size = root_dir_sectors * self.bytes_per_sector
        first_data_sector = reserved + self.num_fats * fat_size + root_dir_sectors
        self.data_offset = first_data_sector * self.bytes_per_sector

        if total_sectors <= first_data_sector:
            raise FatFormatError("no data region")
        self.cluster_count = (total_sectors - first_data_sector) // spc

        if self.cluster_count < 4085:
            self.fat_type = 12
        elif self.cluster_count < 65525:
            self.fat_type = 16
        else:
            self.fat_type = 32

    def _read_at(self, offset: int, size: int) -> bytes:
        self._stream.seek(offset, io.SEEK_SET)
        return self._stream.read(size)

    def cluster_offset(self, cluster: int) -> int:
        """Byte offset of a data cluster relative to the image start."""
        if not 2 <= cluster < self.cluster_count + 2:
            raise FatFormatError(f"cluster {cluster} outside the data region")
        return self.data_offset + (cluster - 2) * self.cluster_size

    def _next_cluster(self, cluster: int) -> int | None:
        if self.fat_type == 12:
            raw = self._read_at(self.fat_offset + cluster + cluster // 2, 2)
            (value,) = struct.unpack("<H", raw)
            value = value >> 4 if cluster & 1 else value & 0x0FFF
            end = 0xFF7
        elif self.fat_type == 16:
            (value,) = struct.unpack("<H", self._read_at(self.fat_offset + 2 * cluster, 2))
            end = 0xFFF7
        else:
            (value,) = struct.unpack("<I", self._read_at(self.fat_offset + 4 * cluster, 4))
            value &= 0x0FFFFFFF
            end = 0x0FFFFFF7
        if value < 2 or value >= end:
            return None
        return value

    def chain(self, first_cluster: int) -> list[int]:
        """Follow a cluster chain starting at first_cluster."""
        clusters: list[int] = []
        cluster: int | None = first_cluster
        while cluster is not None:
            if len(clusters) > self.cluster_count:
                raise FatFormatError(f"cluster chain loop at {first_cluster}")
            clusters.append(cluster)
            cluster = self._next_cluster(cluster)
        return clusters

    def _dir_bytes(self, directory: FatEntry | None) -> bytes:
        if directory is None and self.fat_type != 32:
            return self._read_at(self.root_dir_offset, self.root_dir_size)
        first = self.root_cluster if directory is None else directory.first_cluster
        return b"".join(
            self._read_at(self.cluster_offset(c), self.cluster_size)
            for c in self.chain(first)
        )

    def list_dir(self, directory: FatEntry | None = None) -> list[FatEntry]:
        """List entries of a directory (the root directory if None)."""
        data = self._dir_bytes(directory)
        entries: list[FatEntry] = []
        lfn_parts: dict[int, bytes] = {}
        lfn_checksum_value: int | None = None

        for pos in range(0, len(data) - DIR_ENTRY_SIZE + 1, DIR_ENTRY_SIZE):
            raw = data[pos : pos + DIR_ENTRY_SIZE]
            first = raw[0]
            if first == 0x00:
                break
            if first == 0xE5:
                lfn_parts.clear()
                continue

            attr = raw[11]
            if attr & ATTR_LONG_NAME == ATTR_LONG_NAME:
                if first & LFN_LAST_ENTRY:
                    lfn_parts.clear()
                    lfn_checksum_value = raw[13]
                lfn_parts[first & 0x1F] = raw[1:11] + raw[14:26] + raw[28:32]
                continue

            (
                short_name,
                attr,
                nt_flags,
                _,
                _,
                _,
                _,
                cluster_hi,
                _,
                _,
                cluster_lo,
                size,
            ) = _DIR_ENTRY.unpack(raw)

            name = None
            if lfn_parts and lfn_checksum_value == lfn_checksum(short_name):
                joined = b"".join(lfn_parts[i] for i in sorted(lfn_parts))
                name = joined.decode("utf-16-le", errors="replace").split("\x00", 1)[0]
            lfn_parts.clear()

            if attr & ATTR_VOLUME_ID:
                continue
            if name is None:
                name = self._decode_short_name(short_name, nt_flags)
            if name in (".", ".."):
                continue

            cluster = cluster_lo | (cluster_hi << 16 if self.fat_type == 32 else 0)
            entries.append(
                FatEntry(
                    name=name,
                    is_dir=bool(attr & ATTR_DIRECTORY),
                    first_cluster=cluster,
                    size=size,
                )
            )
        return entries

    @staticmethod
    def _decode_short_name(short_name: bytes, nt_flags: int) -> str:
        base = short_name[:8].decode("ascii", errors="replace").rstrip()
        ext = short_name[8:].decode("ascii", errors="replace").rstrip()
        if base.startswith("\x05"):
            base = "\xe5" + base[1:]
        if nt_flags & NT_LOWER_BASE:
            base = base.lower()
        if nt_flags & NT_LOWER_EXT:
            ext = ext.lower()
        return f"{base}.{ext}" if ext else base

    def lookup(self, path: str) -> FatEntry:
        """Find the entry for an absolute path (case-insensitive).

        Raises:
            FatPathNotFoundError: No such path.
        """
        directory: FatEntry | None = None
        parts = [p for p in PurePosixPath(path).parts if p != "/"]
        for i, part in enumerate(parts):
            wanted = part.casefold()
            entry = next(
                (e for e in self.list_dir(directory) if e.name.casefold() == wanted),
                None,
            )
            if entry is None:
                raise FatPathNotFoundError(path)
            if i == len(parts) - 1:
                return entry
            if not entry.is_dir:
                raise FatPathNotFoundError(path)
            directory = entry
        raise FatPathNotFoundError(path)

    def extents(self, path: str) -> tuple[int, int]:
        """Return (byte offset, length) of a file's data within the image.

        Files written by FatWriter are contiguous, so the first cluster
        offset is where the file's bytes start.

        Raises:
            FatPathNotFoundError: No such file.
            FatFormatError: File has no data clusters.
        """
        entry = self.lookup(path)
        if entry.is_dir:
            raise FatPathNotFoundError(path)
        if entry.first_cluster < 2:
            raise FatFormatError(f"{path} has no data clusters")
        return self.cluster_offset(entry.first_cluster), entry.size

    def read_file(self, path: str) -> bytes:
        """Read a file's content by following its cluster chain."""
        entry = self.lookup(path)
        if entry.is_dir:
            raise FatPathNotFoundError(path)
        if entry.size == 0:
            return b""
        out = bytearray()
        for cluster in self.chain(entry.first_cluster):
            out += self._read_at(self.cluster_offset(cluster), self.cluster_size)
            if len(out) >= entry.size:
                break
        return bytes(out[: entry.size])


__all__ = [
    "CLUSTER_SIZE",
    "FatCapacityError",
    "FatEntry",
    "FatError",
    "FatFormatError",
    "FatPathNotFoundError",
    "FatReader",
    "FatWriter",
    "encode_lfn_entries",
    "generated_short_name",
    "lfn_checksum",
    "plain_short_name",
]
