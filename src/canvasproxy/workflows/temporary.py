"""Reusable truncate-and-rewind byte store holding one fetch's body."""

from __future__ import annotations

import io
import logging
import os
import tempfile
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union

logger = logging.getLogger(__name__)

MEMORY = "memory"
SPOOLED = "temp"
SPOOL_MAX_SIZE = 2 * 1024 * 1024
READ_CHUNK_SIZE = 8192
TEMP_PREFIX = "~"


class TemporaryBuffer:
    """Byte sink that is append-only during a fetch and seekable afterwards.

    ``location`` selects the backing store:

    - ``"memory"``: an in-memory ``BytesIO``;
    - ``"temp"``: a spooled temporary file (memory first, disk past 2 MiB);
    - any other value: a directory that receives a ``~``-prefixed file,
      deleted when the buffer is closed.
    """

    def __init__(self, handle: BinaryIO, path: Optional[Path] = None) -> None:
        self._handle: Optional[BinaryIO] = handle
        self.path = path

    @classmethod
    def open(cls, location: Union[str, Path] = SPOOLED) -> "TemporaryBuffer":
        if str(location) == MEMORY:
            return cls(io.BytesIO())
        if str(location) == SPOOLED:
            return cls(tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE, mode="w+b"))  # type: ignore[arg-type]
        directory = Path(location)
        directory.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix=TEMP_PREFIX, dir=str(directory))
        handle = os.fdopen(fd, "w+b")
        logger.debug("temporary file created at %s", name)
        return cls(handle, Path(name))

    @property
    def closed(self) -> bool:
        return self._handle is None

    @property
    def handle(self) -> BinaryIO:
        if self._handle is None:
            raise ValueError("temporary buffer is closed")
        return self._handle

    def write(self, data: bytes) -> int:
        return self.handle.write(data)

    def reset(self) -> None:
        handle = self.handle
        handle.seek(0)
        handle.truncate(0)

    def rewind(self) -> None:
        self.handle.seek(0)

    def size(self) -> int:
        handle = self.handle
        position = handle.tell()
        handle.seek(0, io.SEEK_END)
        end = handle.tell()
        handle.seek(position)
        return end

    def iter_chunks(self, chunk_size: int = READ_CHUNK_SIZE) -> Iterator[bytes]:
        """Yield the contents from offset zero to EOF."""
        handle = self.handle
        handle.seek(0)
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            yield chunk

    def read(self, length: int = -1, offset: int = 0) -> bytes:
        handle = self.handle
        handle.seek(max(0, offset))
        data = handle.read(length if length is not None and length >= 0 else -1)
        handle.seek(0, io.SEEK_END)
        return data

    def close(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        handle.close()
        if self.path is not None:
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
            logger.debug("temporary file removed: %s", self.path)


__all__ = ["TemporaryBuffer", "MEMORY", "SPOOLED", "TEMP_PREFIX", "READ_CHUNK_SIZE"]
