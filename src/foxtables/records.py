"""Fixed-length record storage with tombstone deletion."""

from __future__ import annotations

import asyncio
import datetime
import logging
import os
from pathlib import Path
from typing import Any, Callable, Mapping

from foxtables.codec import DEFAULT_OPTIONS, CodecOptions, decode_value, encode_value
from foxtables.errors import CorruptHeader, OutOfRange
from foxtables.fileio import AsyncFile
from foxtables.header import EOF_MARKER, FieldDescriptor, FormatDescriptor
from foxtables.scheduler import IOScheduler
from foxtables.types import Record

logger = logging.getLogger(__name__)

ACTIVE = b" "
DELETED = b"*"


class RecordStore:
    """Reads and writes whole records of one table file.

    Every mutation encodes the complete record into one buffer before any
    byte is written, then issues a single write, so a failed encode or a
    cancelled task never leaves a partially written record.
    """

    def __init__(
        self,
        file: AsyncFile,
        descriptor: FormatDescriptor,
        scheduler: IOScheduler,
        options: CodecOptions = DEFAULT_OPTIONS,
        clock: Callable[[], datetime.date] = datetime.date.today,
    ) -> None:
        self.file = file
        self.descriptor = descriptor
        self.scheduler = scheduler
        self.options = options
        self.clock = clock
        # Memo pointers decode to None while the table has no memo file
        self.memo_available = True

    @property
    def count(self) -> int:
        """Return the number of records, tombstoned ones included."""
        return self.descriptor.header.record_count

    @property
    def record_length(self) -> int:
        return self.descriptor.header.record_length

    def check_ordinal(self, ordinal: int) -> None:
        if not 0 <= ordinal < self.count:
            raise OutOfRange(ordinal, self.count)

    def _offset(self, ordinal: int) -> int:
        return self.descriptor.record_offset(ordinal)

    # --- Encoding ---

    def decode(self, ordinal: int, raw: bytes) -> Record:
        """Decode a raw record buffer.

        Raises:
            FieldDecodeError: If any field's bytes are invalid.
        """
        values: dict[str, Any] = {}
        null_flags = self.descriptor.null_flags
        nulls = raw[null_flags.offset : null_flags.end] if null_flags is not None else b""
        for f in self.descriptor.user_fields:
            if f.null_bit is not None and nulls[f.null_bit // 8] & (1 << (f.null_bit % 8)):
                values[f.name] = None
                continue
            if f.type.is_memo and not self.memo_available:
                values[f.name] = None
                continue
            values[f.name] = decode_value(f, raw[f.offset : f.end], self.options)
        return Record(ordinal=ordinal, values=values, deleted=raw[:1] == DELETED)

    def _set_null(self, buf: bytearray, f: FieldDescriptor, null: bool) -> None:
        if f.null_bit is None or self.descriptor.null_flags is None:
            return
        byte = self.descriptor.null_flags.offset + f.null_bit // 8
        mask = 1 << (f.null_bit % 8)
        if null:
            buf[byte] |= mask
        else:
            buf[byte] &= ~mask & 0xFF

    def encode(self, values: Mapping[str, Any], base: bytes | None = None) -> bytes:
        """Encode values over base (a stored record) or a blank record.

        None stored into a nullable field sets its null bit; unset nullable
        fields of a blank record are null.

        Raises:
            KeyError: If a name is not a field of the table.
            FieldValueTypeMismatch: If a value does not match its field type.
            Overflow: If a value does not fit its field.
        """
        if base is None:
            buf = bytearray(ACTIVE)
            for f in self.descriptor.fields:
                buf += encode_value(f, None, self.options)
            for f in self.descriptor.user_fields:
                self._set_null(buf, f, True)
        else:
            buf = bytearray(base)
        for name, value in values.items():
            f = self.descriptor.get_field(name)
            buf[f.offset : f.end] = encode_value(f, value, self.options)
            self._set_null(buf, f, value is None)
        return bytes(buf)

    # --- Reads ---

    async def read_raw(self, ordinal: int) -> bytes:
        """Return the raw bytes of a record, deletion flag included.

        Raises:
            OutOfRange: If ordinal is negative or not below the record count.
            CorruptHeader: If the file ends before the record does.
        """
        self.check_ordinal(ordinal)
        raw = await self.file.read_at(self._offset(ordinal), self.record_length)
        if len(raw) != self.record_length:
            raise CorruptHeader(
                f"Record {ordinal} of {self.file.path} is truncated: "
                f"{len(raw)} of {self.record_length} bytes ({self.count} records declared)"
            )
        return raw

    async def read(self, ordinal: int) -> Record:
        """Read and decode a record.

        Raises:
            OutOfRange: If ordinal is negative or not below the record count.
            CorruptHeader: If the file ends before the record does.
            FieldDecodeError: If the record cannot be decoded.
        """
        async with self.scheduler.read():
            raw = await self.read_raw(ordinal)
        return self.decode(ordinal, raw)

    async def is_deleted(self, ordinal: int) -> bool:
        async with self.scheduler.read():
            self.check_ordinal(ordinal)
            flag = await self.file.read_at(self._offset(ordinal), 1)
        return flag == DELETED

    # --- Writes ---

    async def write(self, ordinal: int, values: Mapping[str, Any]) -> None:
        """Overwrite the given fields of a record; other fields keep their bytes."""
        async with self.scheduler.write():
            await self.write_locked(ordinal, values)

    async def write_locked(self, ordinal: int, values: Mapping[str, Any]) -> bytes:
        """write() for callers already holding the write section.

        Returns the record bytes as they were before the write.
        """
        old = await self.read_raw(ordinal)
        buf = self.encode(values, base=old)
        await self.file.write_at(self._offset(ordinal), buf)
        return old

    async def append(self, values: Mapping[str, Any]) -> int:
        """Append a record and return its ordinal.

        Autoincrement fields without a supplied value receive the field's
        next value.  The record count grows only after the record bytes are
        written.
        """
        async with self.scheduler.write():
            values = dict(values)
            counters: list[tuple[FieldDescriptor, int]] = []
            for f in self.descriptor.fields:
                if f.autoincrement and not _supplied(values, f.name):
                    values[f.name] = f.autoinc_next
                    counters.append((f, f.autoinc_next + f.autoinc_step))

            buf = self.encode(values)
            ordinal = self.count
            await self.file.write_at(self._offset(ordinal), buf + bytes([EOF_MARKER]))

            header = self.descriptor.header
            header.record_count += 1
            header.last_update = self.clock()
            for f, next_value in counters:
                f.autoinc_next = next_value
            try:
                await self.write_header_locked()
            except BaseException:
                header.record_count -= 1
                for f, next_value in counters:
                    f.autoinc_next = next_value - f.autoinc_step
                raise
        return ordinal

    async def _set_flag(self, ordinal: int, flag: bytes) -> None:
        # Checked under the lock: a compaction may shrink the table meanwhile
        async with self.scheduler.write():
            self.check_ordinal(ordinal)
            await self.file.write_at(self._offset(ordinal), flag)

    async def mark_deleted(self, ordinal: int) -> None:
        """Set the tombstone flag; deleting a deleted record is a no-op."""
        await self._set_flag(ordinal, DELETED)

    async def undelete(self, ordinal: int) -> None:
        await self._set_flag(ordinal, ACTIVE)

    async def write_header_locked(self) -> None:
        """Rewrite header and field descriptors (caller holds the write section)."""
        await self.file.write_at(0, self.descriptor.serialize())

    async def flush(self, sync: bool = True) -> None:
        """Persist the header and, when sync is set, fsync the table file."""
        async with self.scheduler.write():
            await self.write_header_locked()
            if sync:
                await self.file.sync()

    # --- Compaction ---

    async def compact(self, on_removed: Callable[[bytes], None] | None = None) -> int:
        """Rewrite the table without tombstoned records.

        Live records are copied in order into a temporary file next to the
        table, which then atomically replaces it.  Ordinals are renumbered.
        The caller holds the exclusive section.  Returns the number of
        records removed; on_removed is called with each removed record.
        """
        path = self.file.path
        tmp_path = path.with_name(path.name + ".tmp")
        header = self.descriptor.header
        kept = 0
        removed = 0

        tmp = await AsyncFile.open(tmp_path, create=True)
        try:
            offset = header.header_length
            for ordinal in range(self.count):
                raw = await self.read_raw(ordinal)
                if raw[:1] == DELETED:
                    removed += 1
                    if on_removed is not None:
                        on_removed(raw)
                    continue
                await tmp.write_at(offset, raw)
                offset += self.record_length
                kept += 1
            await tmp.write_at(offset, bytes([EOF_MARKER]))

            old_count = header.record_count
            header.record_count = kept
            header.last_update = self.clock()
            try:
                await tmp.write_at(0, self.descriptor.serialize())
            finally:
                header.record_count = old_count
            await tmp.sync()
        finally:
            await tmp.close()

        if removed == 0:
            await asyncio.to_thread(os.remove, tmp_path)
            return 0

        await self.file.close()
        await asyncio.to_thread(os.replace, tmp_path, path)
        self.file = await AsyncFile.open(path)
        header.record_count = kept
        logger.debug("Compacted %s: %d kept, %d removed", path, kept, removed)
        return removed

    @staticmethod
    async def create_file(path: Path, descriptor: FormatDescriptor) -> AsyncFile:
        """Create a table file holding only the header and the EOF marker."""
        file = await AsyncFile.open(path, create=True)
        try:
            await file.write_at(0, descriptor.serialize() + bytes([EOF_MARKER]))
            await file.sync()
        except BaseException:
            await file.close()
            raise
        return file


def _supplied(values: Mapping[str, Any], name: str) -> bool:
    return any(key.upper() == name and value is not None for key, value in values.items())
