"""Memo file (.fpt) storage.

    | Offset             | Size | Content                                   |
    | 0                  | 4    | next free block (u32 BE)                  |
    | 6                  | 2    | block size in bytes (u16 BE)              |
    | 512 (rounded up)   |      | blocks                                    |

A value starts on a block boundary with an 8-byte header (type u32 BE,
length u32 BE) and occupies as many contiguous blocks as header plus
payload need.  Block numbers are counted from the start of the file, so the
first data block is ceil(512 / block_size).
"""

from __future__ import annotations

import bisect
import logging
import struct
from pathlib import Path

from foxtables.errors import MemoCorrupt, MemoOutOfRange
from foxtables.fileio import AsyncFile
from foxtables.types import MEMO_OBJECT, MEMO_PICTURE, MEMO_TEXT, MemoRef

logger = logging.getLogger(__name__)

MEMO_HEADER_SIZE = 512
BLOCK_HEADER_SIZE = 8
DEFAULT_BLOCK_SIZE = 64

_FILE_HEADER = struct.Struct(">I2xH")
_BLOCK_HEADER = struct.Struct(">II")

_KINDS = (MEMO_PICTURE, MEMO_TEXT, MEMO_OBJECT)


def first_block(block_size: int) -> int:
    """Return the number of the first block after the 512-byte header."""
    return -(-MEMO_HEADER_SIZE // block_size)


class MemoStore:
    """Block-allocated variable-length values referenced from table records.

    Released block runs are kept in an in-memory free list and reused by
    best fit; the list is rebuilt empty on every open.
    """

    def __init__(self, file: AsyncFile, block_size: int, next_free: int) -> None:
        self.file = file
        self.block_size = block_size
        self.next_free = next_free
        # Sorted (start, count) runs of reusable blocks
        self._free: list[tuple[int, int]] = []

    @property
    def path(self) -> Path:
        return self.file.path

    @property
    def first_block(self) -> int:
        return first_block(self.block_size)

    @property
    def free_runs(self) -> list[tuple[int, int]]:
        return list(self._free)

    @classmethod
    async def create(cls, path: str | Path, block_size: int = DEFAULT_BLOCK_SIZE) -> MemoStore:
        """Create an empty memo file, replacing any existing one."""
        if not 1 <= block_size <= 0xFFFF:
            raise ValueError(f"Memo block size {block_size} not in [1, 65535]")
        file = await AsyncFile.open(path, create=True)
        store = cls(file, block_size, first_block(block_size))
        header = _FILE_HEADER.pack(store.next_free, block_size)
        await file.write_at(0, header.ljust(store.first_block * block_size, b"\x00"))
        await file.sync()
        logger.debug("Created memo file %s with block size %d", path, block_size)
        return store

    @classmethod
    async def open(cls, path: str | Path) -> MemoStore:
        """Open an existing memo file.

        Raises:
            FileNotFoundError: If the file does not exist.
            MemoCorrupt: If the header is truncated or inconsistent.
        """
        file = await AsyncFile.open(path)
        try:
            header = await file.read_at(0, MEMO_HEADER_SIZE)
            if len(header) < _FILE_HEADER.size:
                raise MemoCorrupt(f"Memo file {path} is truncated")
            next_free, block_size = _FILE_HEADER.unpack(header[: _FILE_HEADER.size])
            if block_size == 0:
                raise MemoCorrupt(f"Memo file {path} declares block size 0")
            if next_free < first_block(block_size):
                raise MemoCorrupt(f"Memo file {path} has next free block {next_free}")
        except BaseException:
            await file.close()
            raise
        logger.debug(
            "Opened memo file %s (block size %d, next free %d)", path, block_size, next_free
        )
        return cls(file, block_size, next_free)

    def blocks_for(self, length: int) -> int:
        """Return the number of blocks a payload of length bytes occupies."""
        return max(1, -(-(BLOCK_HEADER_SIZE + length) // self.block_size))

    async def _read_block_header(self, block: int) -> tuple[int, int, int]:
        """Return (kind, length, file size) for the value at block."""
        size = await self.file.size()
        offset = block * self.block_size
        if block < self.first_block or offset + BLOCK_HEADER_SIZE > size:
            raise MemoOutOfRange(
                f"Memo block {block} outside [{self.first_block}, {size // self.block_size})"
            )
        kind, length = _BLOCK_HEADER.unpack(await self.file.read_at(offset, BLOCK_HEADER_SIZE))
        if length > size - offset - BLOCK_HEADER_SIZE:
            raise MemoCorrupt(
                f"Memo block {block} declares {length} bytes, "
                f"{size - offset - BLOCK_HEADER_SIZE} available"
            )
        return kind, length, size

    async def read(self, ref: MemoRef) -> bytes:
        """Return the payload stored at ref.

        Raises:
            MemoOutOfRange: If the block is before the first data block or
                beyond the end of the file.
            MemoCorrupt: If the length prefix runs past the end of the file.
        """
        kind, length, _ = await self._read_block_header(ref.block)
        if kind not in _KINDS:
            logger.debug("Memo block %d has unknown type %d", ref.block, kind)
        offset = ref.block * self.block_size + BLOCK_HEADER_SIZE
        return await self.file.read_at(offset, length)

    def _take_free_run(self, needed: int) -> int | None:
        """Remove and return the start of the smallest sufficient free run."""
        best = None
        for i, (start, count) in enumerate(self._free):
            if count >= needed and (best is None or count < self._free[best][1]):
                best = i
        if best is None:
            return None
        start, count = self._free[best]
        if count == needed:
            del self._free[best]
        else:
            self._free[best] = (start + needed, count - needed)
        return start

    async def write(self, data: bytes, kind: int = MEMO_TEXT) -> MemoRef:
        """Store data in a fresh block run and return its reference.

        The payload is on stable storage when this returns.  Callers
        serialize allocation through IOScheduler.memo_write().
        """
        needed = self.blocks_for(len(data))
        block = self._take_free_run(needed)
        extend = block is None
        if block is None:
            block = self.next_free

        payload = _BLOCK_HEADER.pack(kind, len(data)) + data
        payload = payload.ljust(needed * self.block_size, b"\x00")
        await self.file.write_at(block * self.block_size, payload)
        if extend:
            self.next_free = block + needed
            await self.file.write_at(0, struct.pack(">I", self.next_free))
        await self.file.sync()
        logger.debug(
            "Wrote %d memo bytes at block %d (%d blocks, %s)",
            len(data),
            block,
            needed,
            "extended" if extend else "reused",
        )
        return MemoRef(block, binary=kind != MEMO_TEXT)

    async def release(self, ref: MemoRef) -> None:
        """Return the blocks of the value at ref to the free list."""
        _, length, _ = await self._read_block_header(ref.block)
        self._add_free_run(ref.block, self.blocks_for(length))

    def _add_free_run(self, start: int, count: int) -> None:
        if any(s <= start < s + c for s, c in self._free):
            logger.warning("Memo block %d is already free", start)
            return
        i = bisect.bisect_left(self._free, (start, count))
        self._free.insert(i, (start, count))
        # Coalesce with the following run, then with the preceding one
        if i + 1 < len(self._free):
            nstart, ncount = self._free[i + 1]
            if start + count == nstart:
                count += ncount
                self._free[i] = (start, count)
                del self._free[i + 1]
        if i > 0:
            pstart, pcount = self._free[i - 1]
            if pstart + pcount == start:
                self._free[i - 1] = (pstart, pcount + count)
                del self._free[i]

    async def sync(self) -> None:
        await self.file.sync()

    async def close(self) -> None:
        await self.file.close()
