"""Windowed view of a region embedded in a larger stream.

WindowedReader lets a region-local reader (the FAT extent lookup) operate on
the boot region while it sits at a fixed offset inside the whole medium.

Supported seek modes:
- io.SEEK_SET: translated, position P maps to P + offset in the underlying
  stream; the returned position is window-relative.
- io.SEEK_CUR / io.SEEK_END: passed through untranslated; the returned
  position is the underlying stream's.

Only SEEK_SET is translated because FatReader issues absolute seeks only. A
consumer relying on relative or end-relative seeks within the window needs
an adapter that tracks its own cursor and window length.
"""

import io
from typing import BinaryIO


class WindowedReader:
    """Present stream[offset:] as a stream starting at position 0."""

    def __init__(self, stream: BinaryIO, offset: int) -> None:
        if offset < 0:
            raise ValueError(f"window offset must not be negative: {offset}")
        self._stream = stream
        self.offset = offset

    def seek(self, pos: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_SET:
            return self._stream.seek(pos + self.offset, io.SEEK_SET) - self.offset
        return self._stream.seek(pos, whence)

    def read(self, size: int = -1) -> bytes:
        return self._stream.read(size)

    def __repr__(self) -> str:
        return f"WindowedReader({self._stream!r}, offset={self.offset})"


__all__ = ["WindowedReader"]
