"""Table header and field descriptor layout.

Table file prefix:

    | Offset       | Size | Content                                          |
    | 0            | 1    | version byte (dialect + memo presence)           |
    | 1            | 3    | last update, YY MM DD (YY = years since 1900)    |
    | 4            | 4    | record count (u32 LE)                            |
    | 8            | 2    | header length (u16 LE)                           |
    | 10           | 2    | record length (u16 LE)                           |
    | 28           | 1    | table flags (0x01 cdx, 0x02 memo, 0x04 dbc)      |
    | 29           | 1    | language driver id                               |
    | 32 + 32*i    | 32   | field descriptor i                               |
    | 32 + 32*n    | 1    | terminator 0x0D                                  |
    | (VFP only)   | 263  | optional database container backlink             |
"""

from __future__ import annotations

import datetime
import logging
import re
import struct
from dataclasses import dataclass, field, replace
from typing import Iterable

from foxtables.codec import default_length
from foxtables.errors import (
    CorruptHeader,
    DuplicateFieldName,
    UnsupportedFieldType,
)
from foxtables.fileio import AsyncFile
from foxtables.types import FIELD_TYPE_TAGS, Dialect, FieldType

logger = logging.getLogger(__name__)

HEADER_SIZE = 32
DESCRIPTOR_SIZE = 32
TERMINATOR = 0x0D
EOF_MARKER = 0x1A
BACKLINK_SIZE = 263
MAX_NAME_LENGTH = 10

# Field flags (descriptor byte 18)
FLAG_SYSTEM = 0x01
FLAG_NULLABLE = 0x02
FLAG_BINARY = 0x04
FLAG_AUTOINCREMENT = 0x0C

# Table flags (header byte 28)
TABLE_HAS_CDX = 0x01
TABLE_HAS_MEMO = 0x02

NULL_FLAGS_NAME = "_NULLFLAGS"

_HEADER_STRUCT = struct.Struct("<B3BIHH16xBB2x")
_DESCRIPTOR_STRUCT = struct.Struct("<11scIBBBIB8x")
_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass
class FieldDescriptor:
    """One column of a table."""

    name: str
    type: FieldType
    length: int
    decimals: int = 0
    flags: int = 0
    autoinc_next: int = 0
    autoinc_step: int = 0
    offset: int = 0  # offset within record; first field starts at 1
    null_bit: int | None = None  # bit in the null flags field, for nullable VFP fields

    @property
    def binary(self) -> bool:
        return bool(self.flags & FLAG_BINARY)

    @property
    def nullable(self) -> bool:
        return bool(self.flags & FLAG_NULLABLE)

    @property
    def system(self) -> bool:
        return bool(self.flags & FLAG_SYSTEM)

    @property
    def autoincrement(self) -> bool:
        return self.flags & FLAG_AUTOINCREMENT == FLAG_AUTOINCREMENT

    @property
    def holds_binary(self) -> bool:
        """Return whether memo content of this field is raw bytes rather than text."""
        return self.type in (FieldType.GENERAL, FieldType.PICTURE) or self.binary

    @property
    def end(self) -> int:
        return self.offset + self.length

    @classmethod
    def from_bytes(cls, data: bytes) -> FieldDescriptor:
        """Parse a 32-byte field descriptor.

        Raises:
            CorruptHeader: If the name is not ASCII or the length is invalid.
            UnsupportedFieldType: If the type tag is unknown.
        """
        raw_name, raw_tag, _displacement, length, decimals, flags, next_value, step = (
            _DESCRIPTOR_STRUCT.unpack(data)
        )
        try:
            name = raw_name.split(b"\x00", 1)[0].decode("ascii").strip().upper()
            tag = raw_tag.decode("ascii")
        except UnicodeDecodeError as e:
            raise CorruptHeader(f"Field descriptor {raw_name!r} is not ASCII") from e
        if not name:
            raise CorruptHeader("Field descriptor has an empty name")

        field_type = FIELD_TYPE_TAGS.get(tag.upper())
        if field_type is None:
            raise UnsupportedFieldType(name, tag)

        return cls(
            name=name,
            type=field_type,
            length=length,
            decimals=decimals,
            flags=flags,
            autoinc_next=next_value,
            autoinc_step=step,
        )

    def to_bytes(self) -> bytes:
        """Serialize to the 32-byte descriptor layout."""
        return _DESCRIPTOR_STRUCT.pack(
            self.name.encode("ascii"),
            self.type.value.encode("ascii"),
            self.offset,
            self.length,
            self.decimals,
            self.flags,
            self.autoinc_next,
            self.autoinc_step,
        )

    def __repr__(self) -> str:
        if self.type.has_decimals:
            spec = f"{self.type.value}({self.length},{self.decimals})"
        else:
            spec = f"{self.type.value}({self.length})"
        return f"FieldDescriptor({self.name} {spec})"


@dataclass
class TableHeader:
    """The fixed 32-byte table header."""

    version: int
    last_update: datetime.date | None = None
    record_count: int = 0
    header_length: int = 0
    record_length: int = 0
    table_flags: int = 0
    language_driver: int = 0

    @property
    def dialect(self) -> Dialect:
        return Dialect.from_version(self.version)

    @classmethod
    def from_bytes(cls, data: bytes) -> TableHeader:
        """Parse the 32-byte header.

        Raises:
            CorruptHeader: If fewer than 32 bytes are given.
            UnsupportedDialect: If the version byte is not FoxPro/VFP.
        """
        if len(data) < HEADER_SIZE:
            raise CorruptHeader(f"Table header truncated: {len(data)} of {HEADER_SIZE} bytes")
        (version, yy, mm, dd, count, header_length, record_length, flags, driver) = (
            _HEADER_STRUCT.unpack(data[:HEADER_SIZE])
        )
        # Validates the version byte
        Dialect.from_version(version)
        try:
            last_update: datetime.date | None = datetime.date(1900 + yy, mm, dd)
        except ValueError:
            last_update = None
        return cls(
            version=version,
            last_update=last_update,
            record_count=count,
            header_length=header_length,
            record_length=record_length,
            table_flags=flags,
            language_driver=driver,
        )

    def to_bytes(self) -> bytes:
        """Serialize to the 32-byte header layout."""
        if self.last_update is not None:
            yy = min(max(self.last_update.year - 1900, 0), 255)
            mm, dd = self.last_update.month, self.last_update.day
        else:
            yy = mm = dd = 0
        return _HEADER_STRUCT.pack(
            self.version,
            yy,
            mm,
            dd,
            self.record_count,
            self.header_length,
            self.record_length,
            self.table_flags,
            self.language_driver,
        )


@dataclass
class FormatDescriptor:
    """Header plus field descriptors of a table."""

    header: TableHeader
    fields: list[FieldDescriptor] = field(default_factory=list)
    backlink: bytes = b""

    def __post_init__(self) -> None:
        self._by_name = {f.name: f for f in self.user_fields}
        self.null_flags: FieldDescriptor | None = None

    @property
    def dialect(self) -> Dialect:
        return self.header.dialect

    @property
    def user_fields(self) -> list[FieldDescriptor]:
        """Return the fields records expose; system fields are hidden."""
        return [f for f in self.fields if not f.system]

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.user_fields]

    @property
    def record_length(self) -> int:
        return 1 + sum(f.length for f in self.fields)

    @property
    def header_length(self) -> int:
        return HEADER_SIZE + DESCRIPTOR_SIZE * len(self.fields) + 1 + len(self.backlink)

    @property
    def memo_fields(self) -> list[FieldDescriptor]:
        return [f for f in self.fields if f.type.is_memo]

    def get_field(self, name: str) -> FieldDescriptor:
        """Look up a field by name (case-insensitive).

        Raises:
            KeyError: If the table has no such field, or it is a system field.
        """
        try:
            return self._by_name[name.upper()]
        except KeyError:
            raise KeyError(f"Field '{name}' not found") from None

    def has_field(self, name: str) -> bool:
        return name.upper() in self._by_name

    def record_offset(self, ordinal: int) -> int:
        """Get byte offset of a record ordinal within the table file."""
        return self.header.header_length + ordinal * self.header.record_length

    @staticmethod
    def header_length_for(buf: bytes) -> int:
        """Return the declared header length from the first 32 bytes."""
        return TableHeader.from_bytes(buf).header_length

    @classmethod
    def parse(cls, data: bytes) -> FormatDescriptor:
        """Parse and validate a table prefix of at least header_length bytes.

        Raises:
            CorruptHeader: On any structural inconsistency.
            UnsupportedDialect: If the version byte is not FoxPro/VFP.
            UnsupportedFieldType: If a descriptor carries an unknown tag.
            DuplicateFieldName: If two descriptors share a name.
        """
        header = TableHeader.from_bytes(data)
        dialect = header.dialect
        if len(data) < header.header_length:
            raise CorruptHeader(
                f"Header declares {header.header_length} bytes but only {len(data)} available"
            )

        fields: list[FieldDescriptor] = []
        pos = HEADER_SIZE
        while True:
            if pos >= header.header_length:
                raise CorruptHeader("Field descriptor array has no 0x0D terminator")
            if data[pos] == TERMINATOR:
                break
            if pos + DESCRIPTOR_SIZE > header.header_length:
                raise CorruptHeader("Field descriptor array overruns the header")
            fields.append(FieldDescriptor.from_bytes(data[pos : pos + DESCRIPTOR_SIZE]))
            pos += DESCRIPTOR_SIZE

        minimal = pos + 1
        backlink = b""
        if header.header_length == minimal + BACKLINK_SIZE and dialect == Dialect.VISUAL_FOXPRO:
            backlink = bytes(data[minimal : minimal + BACKLINK_SIZE])
        elif header.header_length != minimal:
            raise CorruptHeader(
                f"Header length {header.header_length} does not match {len(fields)} fields"
            )

        descriptor = cls(header=header, fields=fields, backlink=backlink)
        descriptor.validate()
        return descriptor

    @classmethod
    async def read(cls, file: AsyncFile) -> FormatDescriptor:
        """Read and parse the header of an open table file."""
        prefix = await file.read_at(0, HEADER_SIZE)
        if len(prefix) < HEADER_SIZE:
            raise CorruptHeader(f"{file.path} is too short to be a table ({len(prefix)} bytes)")
        header_length = cls.header_length_for(prefix)
        return cls.parse(await file.read_at(0, header_length))

    def validate(self) -> None:
        """Check the structural invariants and assign field offsets and null bits."""
        seen: set[str] = set()
        offset = 1
        null_flags = None
        null_bits = 0
        for f in self.fields:
            if f.name in seen:
                raise DuplicateFieldName(f.name)
            seen.add(f.name)
            if not self.dialect.supports(f.type):
                raise UnsupportedFieldType(f.name, f.type.value)
            fixed = f.type.fixed_length
            if fixed is not None and f.length != fixed:
                raise CorruptHeader(f"Field '{f.name}' of type {f.type.value} has length {f.length}")
            if f.type.is_memo and f.length not in (4, 10):
                raise CorruptHeader(f"Memo field '{f.name}' has length {f.length}")
            if f.length < 1:
                raise CorruptHeader(f"Field '{f.name}' has zero length")
            f.offset = offset
            offset += f.length

            if f.type == FieldType.NULL_FLAGS:
                if null_flags is not None:
                    raise CorruptHeader(f"Second null flags field '{f.name}'")
                null_flags = f
            # FoxPro 2.x has no nulls; its flag bytes are not trusted
            if f.nullable and not f.system and self.dialect == Dialect.VISUAL_FOXPRO:
                f.null_bit = null_bits
                null_bits += 1
            else:
                f.null_bit = None
        if null_bits and (null_flags is None or null_flags.length * 8 < null_bits):
            raise CorruptHeader(
                f"No null flags field holds the bits of {null_bits} nullable fields"
            )
        self.null_flags = null_flags
        self._by_name = {f.name: f for f in self.user_fields}

        if self.header.record_length != self.record_length:
            raise CorruptHeader(
                f"Record length {self.header.record_length} does not match fields "
                f"({self.record_length})"
            )
        if self.header.header_length != self.header_length:
            raise CorruptHeader(
                f"Header length {self.header.header_length} does not match fields "
                f"({self.header_length})"
            )

    def serialize(self) -> bytes:
        """Serialize header, descriptors, terminator and backlink."""
        parts = [self.header.to_bytes()]
        parts.extend(f.to_bytes() for f in self.fields)
        parts.append(bytes([TERMINATOR]))
        parts.append(self.backlink)
        return b"".join(parts)

    @classmethod
    def build(
        cls,
        fields: Iterable[FieldDescriptor],
        dialect: Dialect = Dialect.VISUAL_FOXPRO,
        language_driver: int = 0x03,
        today: datetime.date | None = None,
    ) -> FormatDescriptor:
        """Create the descriptor set of a new, empty table.

        Lengths of fixed-size and memo fields are filled in from the field
        type; Character, Numeric and Float fields must declare a length.
        When any field is nullable, a hidden _NULLFLAGS system field with one
        bit per nullable field is appended.

        Raises:
            ValueError: If a field name or length is invalid, or a field is
                nullable in a FoxPro 2.x table.
            DuplicateFieldName: If two fields share a name.
            UnsupportedFieldType: If a type is not available in the dialect.
        """
        built: list[FieldDescriptor] = []
        for f in fields:
            f = replace(f, name=f.name.upper())
            if not _NAME_PATTERN.match(f.name) or len(f.name) > MAX_NAME_LENGTH:
                raise ValueError(f"Invalid field name {f.name!r}")
            if f.type == FieldType.NULL_FLAGS or f.system:
                raise ValueError(f"Field '{f.name}': system fields are added by the table")
            if not dialect.supports(f.type):
                raise UnsupportedFieldType(f.name, f.type.value)
            if f.nullable and dialect != Dialect.VISUAL_FOXPRO:
                raise ValueError(f"Field '{f.name}': FoxPro 2.x tables have no nullable fields")
            natural = default_length(f.type, dialect)
            if natural is not None and (f.type.is_memo or f.type.fixed_length is not None):
                f.length = natural
            if not 1 <= f.length <= f.type.max_length:
                raise ValueError(
                    f"Field '{f.name}': length {f.length} not in [1, {f.type.max_length}]"
                )
            if not f.type.has_decimals:
                f.decimals = 0
            elif f.decimals and f.decimals > f.length - 2:
                raise ValueError(
                    f"Field '{f.name}': {f.decimals} decimals do not fit in length {f.length}"
                )
            if f.autoincrement and f.type != FieldType.INTEGER:
                raise ValueError(f"Field '{f.name}': only Integer fields can autoincrement")
            if f.autoincrement and not f.autoinc_step:
                f.autoinc_step = 1
                f.autoinc_next = f.autoinc_next or 1
            built.append(f)

        nullable = sum(1 for f in built if f.nullable)
        if nullable:
            built.append(
                FieldDescriptor(
                    NULL_FLAGS_NAME,
                    FieldType.NULL_FLAGS,
                    -(-nullable // 8),
                    flags=FLAG_SYSTEM | FLAG_BINARY,
                )
            )

        has_memo = any(f.type.is_memo for f in built)
        header = TableHeader(
            version=dialect.version_byte(has_memo),
            last_update=today or datetime.date.today(),
            record_count=0,
            table_flags=TABLE_HAS_MEMO if has_memo and dialect == Dialect.VISUAL_FOXPRO else 0,
            language_driver=language_driver,
        )
        descriptor = cls(header=header, fields=built)
        header.header_length = descriptor.header_length
        header.record_length = descriptor.record_length
        descriptor.validate()
        logger.debug(
            "Built %s descriptor with %d fields, record length %d",
            dialect.value,
            len(built),
            descriptor.record_length,
        )
        return descriptor
