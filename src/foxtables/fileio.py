"""Random-access file handle with async completion.

Blocking calls run in the default thread pool via asyncio.to_thread.  Each
positioned read or write is one seek plus one read/write under a thread lock,
so concurrent calls never interleave their seek and transfer.  Writes are
handed to the OS before write_at returns; only sync() forces them to disk.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from pathlib import Path
from typing import Any, BinaryIO

from foxtables.errors import IoFailure, TableClosed

logger = logging.getLogger(__name__)


class AsyncFile:
    """A binary file opened for positioned reads and writes."""

    def __init__(self, path: Path, handle: BinaryIO) -> None:
        self.path = path
        self._handle: BinaryIO | None = handle
        self._lock = threading.Lock()

    @classmethod
    async def open(cls, path: str | Path, create: bool = False) -> AsyncFile:
        """Open an existing file, or create (truncate) it when create is set.

        Raises:
            FileNotFoundError: If the file does not exist and create is not set.
            IoFailure: On any other OS error.
        """
        path = Path(path)
        mode = "w+b" if create else "r+b"
        try:
            handle = await asyncio.to_thread(open, path, mode)
        except FileNotFoundError:
            raise
        except OSError as e:
            raise IoFailure(e.errno, f"Cannot open {path}: {e.strerror}") from e
        return cls(path, handle)

    @property
    def closed(self) -> bool:
        return self._handle is None

    def _require_handle(self) -> BinaryIO:
        if self._handle is None:
            raise TableClosed(f"File {self.path} is closed")
        return self._handle

    def _read_at_sync(self, offset: int, size: int) -> bytes:
        handle = self._require_handle()
        with self._lock:
            handle.seek(offset)
            return handle.read(size)

    def _write_at_sync(self, offset: int, data: bytes) -> None:
        handle = self._require_handle()
        with self._lock:
            handle.seek(offset)
            handle.write(data)
            handle.flush()

    def _sync_sync(self) -> None:
        handle = self._require_handle()
        with self._lock:
            handle.flush()
            os.fsync(handle.fileno())

    def _size_sync(self) -> int:
        handle = self._require_handle()
        with self._lock:
            handle.flush()
            return os.fstat(handle.fileno()).st_size

    async def _run(self, func: Any, *args: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except OSError as e:
            raise IoFailure(e.errno, f"I/O error on {self.path}: {e.strerror}") from e

    async def read_at(self, offset: int, size: int) -> bytes:
        """Read up to size bytes at offset; shorter at end of file."""
        return await self._run(self._read_at_sync, offset, size)

    async def write_at(self, offset: int, data: bytes) -> None:
        """Write data at offset in one call."""
        await self._run(self._write_at_sync, offset, data)

    async def sync(self) -> None:
        """Flush buffers and fsync to stable storage."""
        await self._run(self._sync_sync)

    async def size(self) -> int:
        return await self._run(self._size_sync)

    async def close(self) -> None:
        """Flush and close the handle.  Closing twice is a no-op."""
        if self._handle is None:
            return
        handle, self._handle = self._handle, None

        def close_sync() -> None:
            with self._lock:
                handle.close()

        try:
            await asyncio.to_thread(close_sync)
        except OSError as e:
            raise IoFailure(e.errno, f"Cannot close {self.path}: {e.strerror}") from e
        logger.debug("Closed %s", self.path)
