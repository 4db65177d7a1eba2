"""Immutable manifest of the files that go into an image region.

A Manifest is produced once by ManifestBuilder.build() and then only read:
the region serializers walk it, nothing appends to it.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path, PurePosixPath

DEFAULT_FILE_MODE = 0o644
DEFAULT_DIR_MODE = 0o755


@dataclass(frozen=True)
class HostFileEntry:
    """A file whose content is read from the host file system."""

    name: str
    source: Path
    mode: int | None = None


@dataclass(frozen=True)
class LiteralFileEntry:
    """A file with inline content."""

    name: str
    content: bytes
    mode: int = DEFAULT_FILE_MODE


@dataclass(frozen=True)
class SymlinkEntry:
    """A symbolic link."""

    name: str
    target: str


@dataclass(frozen=True)
class DirectoryEntry:
    """A directory and its children, in serialization order."""

    name: str
    children: tuple[Entry, ...] = ()
    mode: int = DEFAULT_DIR_MODE

    def child(self, name: str) -> Entry | None:
        return next((c for c in self.children if c.name == name), None)


Entry = DirectoryEntry | HostFileEntry | LiteralFileEntry | SymlinkEntry


@dataclass(frozen=True)
class Manifest:
    """Finalized tree of entries for one region.

    Attributes:
        root: Root directory (its name is empty).
        timestamp: Build time, used for entries without a host mtime.
    """

    root: DirectoryEntry
    timestamp: datetime

    def walk(self) -> Iterator[tuple[str, Entry]]:
        """Yield (absolute path, entry) pairs in pre-order, root excluded."""

        def visit(directory: DirectoryEntry, prefix: str) -> Iterator[tuple[str, Entry]]:
            for entry in directory.children:
                path = f"{prefix}/{entry.name}"
                yield path, entry
                if isinstance(entry, DirectoryEntry):
                    yield from visit(entry, path)

        yield from visit(self.root, "")

    def find(self, path: str) -> Entry | None:
        """Look up an entry by absolute path."""
        node: Entry = self.root
        for part in PurePosixPath(path).parts:
            if part == "/":
                continue
            if not isinstance(node, DirectoryEntry):
                return None
            found = node.child(part)
            if found is None:
                return None
            node = found
        return node

    def __len__(self) -> int:
        return sum(1 for _ in self.walk())


__all__ = [
    "DEFAULT_DIR_MODE",
    "DEFAULT_FILE_MODE",
    "DirectoryEntry",
    "Entry",
    "HostFileEntry",
    "LiteralFileEntry",
    "Manifest",
    "SymlinkEntry",
]
