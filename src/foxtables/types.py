"""Field types, dialects and record values for foxtables."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator

from foxtables.errors import UnsupportedDialect


class FieldType(Enum):
    """FoxPro field kinds, keyed by their descriptor type tag."""

    CHARACTER = "C"
    NUMERIC = "N"
    FLOAT = "F"
    DATE = "D"
    LOGICAL = "L"
    MEMO = "M"
    INTEGER = "I"
    DOUBLE = "B"
    CURRENCY = "Y"
    DATETIME = "T"
    GENERAL = "G"
    PICTURE = "P"
    # Hidden system field holding one null bit per nullable field
    NULL_FLAGS = "0"

    @property
    def fixed_length(self) -> int | None:
        """Return the mandatory byte length, or None if the length is declared."""
        sizes = {
            FieldType.DATE: 8,
            FieldType.LOGICAL: 1,
            FieldType.INTEGER: 4,
            FieldType.DOUBLE: 8,
            FieldType.CURRENCY: 8,
            FieldType.DATETIME: 8,
        }
        return sizes.get(self)

    @property
    def max_length(self) -> int:
        """Return the largest declarable length."""
        if self == FieldType.CHARACTER:
            return 254
        if self in (FieldType.NUMERIC, FieldType.FLOAT):
            return 20
        if self.is_memo:
            return 10
        if self == FieldType.NULL_FLAGS:
            return 255
        return self.fixed_length  # type: ignore[return-value]

    @property
    def is_memo(self) -> bool:
        """Return whether values of this type live in the memo file."""
        return self in (FieldType.MEMO, FieldType.GENERAL, FieldType.PICTURE)

    @property
    def has_decimals(self) -> bool:
        return self in (FieldType.NUMERIC, FieldType.FLOAT)

    @property
    def visual_foxpro_only(self) -> bool:
        """Return whether the type only exists in Visual FoxPro tables."""
        return self in (
            FieldType.INTEGER,
            FieldType.DOUBLE,
            FieldType.CURRENCY,
            FieldType.DATETIME,
            FieldType.NULL_FLAGS,
        )


# Mapping from descriptor tag bytes to FieldType
FIELD_TYPE_TAGS: dict[str, FieldType] = {ft.value: ft for ft in FieldType}


class Dialect(Enum):
    """DBF sub-format, determined by the header version byte."""

    FOXPRO = "foxpro"
    VISUAL_FOXPRO = "visual_foxpro"

    @classmethod
    def from_version(cls, version: int) -> Dialect:
        """Classify a version byte.

        Raises:
            UnsupportedDialect: If the byte is not a FoxPro/VFP version.
        """
        if version in (0x30, 0x31, 0x32):
            return cls.VISUAL_FOXPRO
        if version in (0x02, 0x03, 0xF5, 0xFB):
            return cls.FOXPRO
        raise UnsupportedDialect(version)

    def version_byte(self, has_memo: bool) -> int:
        """Return the version byte written into new tables."""
        if self == Dialect.VISUAL_FOXPRO:
            return 0x30
        return 0xF5 if has_memo else 0x03

    @property
    def memo_pointer_size(self) -> int:
        """Memo pointers are binary u32 in VFP and 10 ASCII digits in FoxPro 2.x."""
        return 4 if self == Dialect.VISUAL_FOXPRO else 10

    def supports(self, field_type: FieldType) -> bool:
        return self == Dialect.VISUAL_FOXPRO or not field_type.visual_foxpro_only


# Memo block type tags (big-endian u32 in the block header)
MEMO_PICTURE = 0
MEMO_TEXT = 1
MEMO_OBJECT = 2


@dataclass(frozen=True)
class MemoRef:
    """Pointer to a value in the memo file.

    The content is not loaded until the table resolves the reference.
    """

    block: int
    binary: bool = False

    def __repr__(self) -> str:
        return f"MemoRef({self.block}{', binary' if self.binary else ''})"


@dataclass
class Record:
    """A decoded table row.

    Values are kept in field order and looked up case-insensitively by name.
    """

    ordinal: int
    values: dict[str, Any] = field(default_factory=dict)
    deleted: bool = False

    def __getitem__(self, name: str) -> Any:
        try:
            return self.values[name.upper()]
        except KeyError:
            raise KeyError(f"Field '{name}' not found in record") from None

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.upper() in self.values

    def __iter__(self) -> Iterator[str]:
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name.upper(), default)

    def keys(self) -> list[str]:
        return list(self.values)

    def items(self) -> list[tuple[str, Any]]:
        return list(self.values.items())

    def as_dict(self) -> dict[str, Any]:
        return dict(self.values)

    def as_tuple(self) -> tuple[Any, ...]:
        return tuple(self.values.values())

    def project(self, names: list[str] | tuple[str, ...]) -> Record:
        """Return a copy holding only the named fields, in the given order."""
        return Record(
            ordinal=self.ordinal,
            values={name.upper(): self[name] for name in names},
            deleted=self.deleted,
        )


@dataclass
class RecordError:
    """Scan item standing in for a record that could not be decoded."""

    ordinal: int
    error: Exception

    def __repr__(self) -> str:
        return f"RecordError({self.ordinal}, {self.error!r})"
