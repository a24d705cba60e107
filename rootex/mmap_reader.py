"""
Blob I/O — read-only input mapping + bounded output buffer.

APPROACH
────────
1. Memory-mapped input (mmap) so the scanner slices the image without
   copying it — the OS handles paging.
2. Fallback to a single plain read() if mmap fails (works on all platforms).
3. Output is pre-sized (the decoded size is unknown until the scan ends) and
   written through a cursor that never moves past the capacity.
4. A mapped output file is truncated to the bytes actually written on close.
"""

import os
import mmap
import logging
from typing import Optional, Union

from .errors import (
    CapacityExceeded,
    InputNotFound,
    InputOpenFailed,
    MappingFailed,
    OutputOpenFailed,
)

logger = logging.getLogger(__name__)

BlobLike = Union[bytes, bytearray, mmap.mmap]


class BlobReader:
    """
    Read-only view of an input image.

    Usage:
        with BlobReader(path) as reader:
            blob = reader.data      # mmap or bytes; supports find() + slicing
            ...
    """

    def __init__(self, path: str, use_mmap: bool = True):
        if not os.path.exists(path):
            raise InputNotFound(f"The input file '{path}' does not seem to exist.")
        try:
            self._fd = open(path, "rb")
        except OSError as e:
            raise InputOpenFailed(f"Failed to open '{path}' for reading: {e}") from e

        self._path = path
        self._mmap: Optional[mmap.mmap] = None
        self._data: Optional[BlobLike] = None
        self._using_mmap = False

        try:
            self._size = os.fstat(self._fd.fileno()).st_size
            if self._size == 0:
                raise MappingFailed(f"'{path}' is too small to map.")
            if use_mmap:
                self._try_mmap()
            if self._data is None:
                self._data = self._fd.read()
        except OSError as e:
            self.close()
            raise InputOpenFailed(f"Failed to read '{path}': {e}") from e
        except MappingFailed:
            self.close()
            raise

    def _try_mmap(self):
        """Attempt to memory-map the whole file read-only."""
        try:
            self._mmap = mmap.mmap(self._fd.fileno(), 0, access=mmap.ACCESS_READ)
            self._data = self._mmap
            self._using_mmap = True
            logger.info(
                "mmap enabled: %d bytes (%.1f MB)",
                self._size, self._size / (1024 ** 2),
            )
        except (OSError, ValueError, OverflowError) as e:
            logger.info("mmap unavailable (%s), using buffered read", e)
            self._mmap = None
            self._using_mmap = False

    @property
    def is_mmap(self) -> bool:
        return self._using_mmap

    @property
    def size(self) -> int:
        return self._size

    @property
    def path(self) -> str:
        return self._path

    @property
    def data(self) -> BlobLike:
        return self._data

    def read_at(self, offset: int, size: int) -> bytes:
        """Read up to `size` bytes at `offset`; short or empty near the end."""
        if offset < 0 or offset >= self._size or size <= 0:
            return b""
        return bytes(self._data[offset:offset + min(size, self._size - offset)])

    def close(self):
        """Release the mapping and the file handle."""
        if self._mmap is not None:
            self._mmap.close()
            self._mmap = None
            self._using_mmap = False
        self._data = None
        if self._fd is not None:
            self._fd.close()
            self._fd = None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class OutputBuffer:
    """
    Pre-sized output with a monotonically advancing write cursor.

    Every append is checked against the capacity first; a fragment that does
    not fit raises CapacityExceeded and nothing is written.
    """

    def __init__(self, capacity: int = 0, storage=None):
        if storage is None:
            storage = bytearray(capacity)
        self._buf = storage
        self._capacity = len(storage)
        self._pos = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def position(self) -> int:
        return self._pos

    @property
    def remaining(self) -> int:
        return self._capacity - self._pos

    def append(self, fragment: bytes) -> int:
        """Write `fragment` at the cursor. Returns the offset it landed at."""
        n = len(fragment)
        if self._pos + n > self._capacity:
            raise CapacityExceeded(n, self.remaining)
        start = self._pos
        self._buf[start:start + n] = fragment
        self._pos = start + n
        return start

    def getvalue(self) -> bytes:
        """Bytes written so far."""
        return bytes(self._buf[:self._pos])

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class MappedOutput(OutputBuffer):
    """
    Output buffer backed by a read/write mapping of the output file.

    The file is grown to `capacity` up front and truncated to the final
    cursor position on close.
    """

    def __init__(self, path: str, capacity: int):
        self._path = path
        self._fd = None
        self._mmap: Optional[mmap.mmap] = None

        try:
            if os.path.exists(path):
                os.remove(path)
            self._fd = open(path, "w+b")
        except OSError as e:
            raise OutputOpenFailed(f"Failed to open '{path}' for writing: {e}") from e

        if capacity <= 0:
            self._fd.close()
            raise MappingFailed("Size is too small to map.")

        try:
            self._fd.truncate(capacity)
            self._mmap = mmap.mmap(self._fd.fileno(), capacity,
                                   access=mmap.ACCESS_WRITE)
        except (OSError, ValueError, OverflowError) as e:
            self._fd.close()
            raise MappingFailed(f"Failed to map '{path}' ({capacity} bytes): {e}") from e

        super().__init__(storage=self._mmap)
        logger.info("Output mapped: %s (%d bytes capacity)", path, capacity)

    @property
    def path(self) -> str:
        return self._path

    def getvalue(self) -> bytes:
        if self._mmap is None:
            with open(self._path, "rb") as f:
                return f.read()
        return super().getvalue()

    def close(self):
        """Flush, unmap, and truncate the file to the decoded length."""
        if self._mmap is not None:
            self._mmap.flush()
            self._mmap.close()
            self._mmap = None
        if self._fd is not None:
            self._fd.truncate(self._pos)
            self._fd.close()
            self._fd = None
            logger.info("Output truncated to %d bytes: %s", self._pos, self._path)
