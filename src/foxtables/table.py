"""A FoxPro table: the .dbf file plus its optional .fpt memo file."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence, Union

from foxtables.codec import CodecOptions, decode_value
from foxtables.codepages import describe, encoding_for
from foxtables.config import TableConfig
from foxtables.errors import (
    FieldDecodeError,
    FieldValueTypeMismatch,
    MemoCorrupt,
    MemoOutOfRange,
    MissingMemoFile,
    TableClosed,
)
from foxtables.fileio import AsyncFile
from foxtables.header import TABLE_HAS_CDX, FieldDescriptor, FormatDescriptor
from foxtables.memo import MemoStore
from foxtables.records import RecordStore
from foxtables.scheduler import IOScheduler
from foxtables.types import (
    FIELD_TYPE_TAGS,
    MEMO_OBJECT,
    MEMO_PICTURE,
    MEMO_TEXT,
    Dialect,
    FieldType,
    MemoRef,
    Record,
)

logger = logging.getLogger(__name__)

FieldSpec = Union[FieldDescriptor, Sequence[Any]]


def memo_path_for(path: Path) -> Path:
    """Return the memo file path belonging to a table path.

    An existing file in either letter case wins; otherwise the extension
    follows the case of the table's extension.
    """
    for suffix in (".fpt", ".FPT"):
        candidate = path.with_suffix(suffix)
        if candidate.exists():
            return candidate
    return path.with_suffix(".FPT" if path.suffix.isupper() else ".fpt")


def coerce_fields(fields: str | Iterable[FieldSpec]) -> list[FieldDescriptor]:
    """Turn a structure string, tuples or descriptors into FieldDescriptors.

    Tuples are (name, type[, length[, decimals]]) where type is a FieldType
    or its one-letter tag.
    """
    if isinstance(fields, str):
        from foxtables.parsing import parse_structure

        return parse_structure(fields)

    result: list[FieldDescriptor] = []
    for spec in fields:
        if isinstance(spec, FieldDescriptor):
            result.append(spec)
            continue
        name, kind, *rest = spec
        if isinstance(kind, str):
            field_type = FIELD_TYPE_TAGS.get(kind.upper())
            if field_type is None:
                raise ValueError(f"Unknown field type {kind!r} for field '{name}'")
        else:
            field_type = FieldType(kind)
        length = rest[0] if rest else (field_type.fixed_length or 0)
        decimals = rest[1] if len(rest) > 1 else 0
        result.append(FieldDescriptor(name, field_type, length, decimals))
    return result


def _memo_kind(field: FieldDescriptor) -> int:
    if field.type == FieldType.PICTURE:
        return MEMO_PICTURE
    if field.type == FieldType.GENERAL or field.binary:
        return MEMO_OBJECT
    return MEMO_TEXT


class Table:
    """An open table.

    Owns the table file handle, the memo store (if any), the format
    descriptor, the record store and the I/O scheduler.  Use one Table per
    file pair; close it (or use ``async with``) to persist the header.
    """

    def __init__(
        self,
        path: Path,
        descriptor: FormatDescriptor,
        file: AsyncFile,
        memo: MemoStore | None,
        config: TableConfig,
    ) -> None:
        self.path = path
        self.descriptor = descriptor
        self.memo = memo
        self.config = config
        self.encoding = config.encoding or encoding_for(descriptor.header.language_driver)
        self.scheduler = IOScheduler()
        self.records = RecordStore(
            file,
            descriptor,
            self.scheduler,
            CodecOptions(self.encoding, config.logical_bad_is_false),
            config.clock,
        )
        self.records.memo_available = memo is not None or not descriptor.memo_fields
        self._closed = False

    # --- Lifecycle ---

    @classmethod
    async def open(cls, path: str | Path, config: TableConfig | None = None) -> Table:
        """Open an existing table.

        Raises:
            FileNotFoundError: If the table file does not exist.
            CorruptHeader, UnsupportedDialect, UnsupportedFieldType,
            DuplicateFieldName: If the header is invalid.
        """
        path = Path(path)
        config = (config or TableConfig()).check()
        file = await AsyncFile.open(path)
        memo: MemoStore | None = None
        try:
            descriptor = await FormatDescriptor.read(file)
            if descriptor.header.table_flags & TABLE_HAS_CDX:
                logger.warning(
                    "Table %s has a structural index; writes will not update it", path
                )

            if descriptor.memo_fields:
                memo_path = memo_path_for(path)
                try:
                    memo = await MemoStore.open(memo_path)
                except FileNotFoundError:
                    logger.warning(
                        "Table %s has memo fields but no memo file %s", path, memo_path
                    )
        except BaseException:
            await file.close()
            raise

        logger.debug(
            "Opened %s (%s, %s, %d fields, %d records)",
            path,
            descriptor.dialect.value,
            describe(descriptor.header.language_driver),
            len(descriptor.user_fields),
            descriptor.header.record_count,
        )
        return cls(path, descriptor, file, memo, config)

    @classmethod
    async def create(
        cls,
        path: str | Path,
        fields: str | Iterable[FieldSpec],
        config: TableConfig | None = None,
    ) -> Table:
        """Create a new, empty table (and memo file when a memo field exists).

        Existing files are replaced.
        """
        path = Path(path)
        config = (config or TableConfig()).check()
        descriptor = FormatDescriptor.build(
            coerce_fields(fields),
            dialect=Dialect(config.dialect),
            language_driver=config.language_driver,
            today=config.clock(),
        )
        path.parent.mkdir(parents=True, exist_ok=True)
        file = await RecordStore.create_file(path, descriptor)
        memo = None
        if descriptor.memo_fields:
            try:
                memo = await MemoStore.create(memo_path_for(path), config.memo_block_size)
            except BaseException:
                await file.close()
                raise
        logger.debug("Created %s with fields %s", path, ", ".join(descriptor.field_names))
        return cls(path, descriptor, file, memo, config)

    async def create_memo(self) -> None:
        """Create the memo file of a table that lost it.

        Pointers stored in the table refer to the lost file, so every memo
        field is cleared before the new file is taken into use.
        """
        self._require_open()
        if self.memo is not None:
            return
        async with self.scheduler.exclusive():
            blank = dict.fromkeys(f.name for f in self.descriptor.memo_fields)
            for ordinal in range(self.records.count):
                await self.records.write_locked(ordinal, blank)
            self.memo = await MemoStore.create(
                memo_path_for(self.path), self.config.memo_block_size
            )
            self.records.memo_available = True
        logger.info("Created memo file %s", self.memo.path)

    async def flush(self) -> None:
        """Persist the header and sync both files."""
        self._require_open()
        await self.records.flush(sync=self.config.sync_on_flush)
        if self.memo is not None and self.config.sync_on_flush:
            await self.memo.sync()

    async def close(self) -> None:
        """Flush and release both files.  Closing twice is a no-op."""
        if self._closed:
            return
        async with self.scheduler.exclusive():
            self._closed = True
            try:
                await self.records.write_header_locked()
                await self.records.file.sync()
            finally:
                await self.records.file.close()
                if self.memo is not None:
                    await self.memo.close()
        logger.debug("Closed %s", self.path)

    async def __aenter__(self) -> Table:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # --- Properties ---

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def dialect(self) -> Dialect:
        return self.descriptor.dialect

    @property
    def fields(self) -> list[FieldDescriptor]:
        return self.descriptor.user_fields

    @property
    def field_names(self) -> list[str]:
        return self.descriptor.field_names

    @property
    def record_count(self) -> int:
        return self.records.count

    def _require_open(self) -> None:
        if self._closed:
            raise TableClosed(f"Table {self.path} is closed")

    # --- Records ---

    async def get(self, ordinal: int) -> Record:
        """Read one record, tombstoned or not."""
        self._require_open()
        return await self.records.read(ordinal)

    async def is_deleted(self, ordinal: int) -> bool:
        self._require_open()
        return await self.records.is_deleted(ordinal)

    async def append(self, values: Mapping[str, Any]) -> int:
        """Append a record and return its ordinal.

        Memo fields accept text, bytes, a MemoRef or None; content is stored
        in the memo file before the record that points at it.
        """
        self._require_open()
        values, new_refs = await self._store_memo_content(values)
        try:
            return await self.records.append(values)
        except Exception:
            await self._release(new_refs.values())
            raise

    async def update(self, ordinal: int, values: Mapping[str, Any]) -> None:
        """Overwrite the named fields of a record.

        Memo blocks replaced by the update are released only after the
        record holding the new pointer is written.
        """
        self._require_open()
        self.records.check_ordinal(ordinal)
        # Memo fields given content or None lose the value they pointed at;
        # a MemoRef passed through is assumed to still be referenced
        replaced = [
            name
            for name, value in values.items()
            if self.descriptor.get_field(name).type.is_memo and not isinstance(value, MemoRef)
        ]
        stored, new_refs = await self._store_memo_content(values)
        try:
            async with self.scheduler.write():
                old_raw = await self.records.write_locked(ordinal, stored)
        except Exception:
            await self._release(new_refs.values())
            raise

        if replaced and self.memo is not None:
            await self._release(self._stored_refs(old_raw, replaced))

    async def delete(self, ordinal: int) -> None:
        self._require_open()
        await self.records.mark_deleted(ordinal)

    async def undelete(self, ordinal: int) -> None:
        self._require_open()
        await self.records.undelete(ordinal)

    async def compact(self) -> int:
        """Physically remove tombstoned records and renumber the rest.

        Memo blocks of removed records go back to the free list.  Returns
        the number of records removed.
        """
        self._require_open()
        removed_raw: list[bytes] = []
        async with self.scheduler.exclusive():
            removed = await self.records.compact(on_removed=removed_raw.append)
            if self.memo is not None:
                names = [f.name for f in self.descriptor.memo_fields]
                for raw in removed_raw:
                    await self._release_locked(self._stored_refs(raw, names))
        return removed

    # --- Memo content ---

    async def read_memo(self, ref: MemoRef) -> str | bytes:
        """Load the content a memo reference points at.

        Text memos are decoded with the table's code page; binary memos are
        returned as bytes.

        Raises:
            MissingMemoFile: If the table has no memo file.
            MemoOutOfRange, MemoCorrupt: If the reference is invalid.
        """
        self._require_open()
        if self.memo is None:
            raise MissingMemoFile(f"Table {self.path} has no memo file")
        async with self.scheduler.read():
            data = await self.memo.read(ref)
        if ref.binary:
            return data
        try:
            return data.decode(self.encoding)
        except UnicodeDecodeError as e:
            raise FieldDecodeError(
                f"Memo block {ref.block} cannot be decoded as {self.encoding}"
            ) from e

    async def with_memos(self, record: Record) -> Record:
        """Return a copy of record with memo references replaced by content."""
        values = dict(record.values)
        for f in self.descriptor.memo_fields:
            ref = values.get(f.name)
            if isinstance(ref, MemoRef):
                values[f.name] = await self.read_memo(ref)
        return Record(ordinal=record.ordinal, values=values, deleted=record.deleted)

    async def _store_memo_content(
        self, values: Mapping[str, Any]
    ) -> tuple[dict[str, Any], dict[str, MemoRef]]:
        """Write memo content to the memo file, replacing it by references."""
        result = dict(values)
        pending: list[tuple[str, FieldDescriptor, bytes]] = []
        for name, value in values.items():
            f = self.descriptor.get_field(name)
            if not f.type.is_memo or value is None or isinstance(value, MemoRef):
                continue
            if isinstance(value, str) and not f.holds_binary:
                try:
                    data = value.encode(self.encoding)
                except UnicodeEncodeError as e:
                    raise FieldValueTypeMismatch(f.name, f.type.value, value) from e
            elif isinstance(value, (bytes, bytearray)):
                data = bytes(value)
            else:
                raise FieldValueTypeMismatch(f.name, f.type.value, value)
            pending.append((name, f, data))

        new_refs: dict[str, MemoRef] = {}
        if not pending:
            return result, new_refs
        if self.memo is None:
            raise MissingMemoFile(f"Table {self.path} has no memo file")

        async with self.scheduler.memo_write():
            for name, f, data in pending:
                ref = await self.memo.write(data, _memo_kind(f))
                new_refs[name] = MemoRef(ref.block, binary=f.holds_binary)
        result.update(new_refs)
        return result, new_refs

    def _stored_refs(self, raw: bytes, names: Iterable[str]) -> list[MemoRef]:
        refs = []
        for name in names:
            f = self.descriptor.get_field(name)
            try:
                ref = decode_value(f, raw[f.offset : f.end], self.records.options)
            except FieldDecodeError as e:
                logger.warning("Not releasing memo of field '%s': %s", f.name, e)
                continue
            if ref is not None:
                refs.append(ref)
        return refs

    async def _release(self, refs: Iterable[MemoRef]) -> None:
        refs = list(refs)
        if not refs or self.memo is None:
            return
        async with self.scheduler.memo_write():
            await self._release_locked(refs)

    async def _release_locked(self, refs: Iterable[MemoRef]) -> None:
        """Free the blocks of refs; the caller holds the memo write section.

        Pointers that do not lead to a valid block are logged and skipped;
        the records that held them are already rewritten.
        """
        if self.memo is None:
            return
        for ref in refs:
            try:
                await self.memo.release(ref)
            except (MemoOutOfRange, MemoCorrupt) as e:
                logger.warning("Not reusing memo block %d: %s", ref.block, e)

    def __repr__(self) -> str:
        state = "closed" if self._closed else f"{self.record_count} records"
        return f"Table({str(self.path)!r}, {self.dialect.value}, {state})"
