"""Exception types raised by foxtables."""

from __future__ import annotations


class FoxTableError(Exception):
    """Base class for all foxtables errors."""


# Structural errors (fatal to open)


class CorruptHeader(FoxTableError, ValueError):
    """The table header or field descriptor array is malformed."""


class UnsupportedDialect(FoxTableError, ValueError):
    """The version byte does not identify a FoxPro or Visual FoxPro table."""

    def __init__(self, version: int) -> None:
        super().__init__(f"Unsupported DBF version byte 0x{version:02X}")
        self.version = version


class UnsupportedFieldType(FoxTableError, ValueError):
    """A field descriptor carries a type tag this engine does not handle."""

    def __init__(self, field_name: str, tag: str) -> None:
        super().__init__(f"Field '{field_name}' has unsupported type {tag!r}")
        self.field_name = field_name
        self.tag = tag


class DuplicateFieldName(FoxTableError, ValueError):
    """Two field descriptors share the same name."""

    def __init__(self, field_name: str) -> None:
        super().__init__(f"Duplicate field name '{field_name}'")
        self.field_name = field_name


# Record errors


class OutOfRange(FoxTableError, IndexError):
    """A record ordinal lies outside [0, record_count)."""

    def __init__(self, ordinal: int, count: int) -> None:
        super().__init__(f"Ordinal {ordinal} out of range [0, {count})")
        self.ordinal = ordinal
        self.count = count


class FieldValueTypeMismatch(FoxTableError, TypeError):
    """A value does not match the type of the field it is written to."""

    def __init__(self, field_name: str, tag: str, value: object) -> None:
        super().__init__(
            f"Field '{field_name}' of type {tag!r} cannot hold {type(value).__name__} value {value!r}"
        )
        self.field_name = field_name
        self.tag = tag
        self.value = value


class Overflow(FoxTableError, ValueError):
    """An encoded value does not fit in its field width."""


class FieldDecodeError(FoxTableError, ValueError):
    """Raw field bytes could not be decoded."""


# Memo errors


class MemoOutOfRange(FoxTableError, IndexError):
    """A memo block number lies outside the memo file."""


class MemoCorrupt(FoxTableError, ValueError):
    """A memo block header is inconsistent with the memo file."""


class MissingMemoFile(FoxTableError):
    """Memo content was written to a table that has no memo file."""


# I/O


class IoFailure(FoxTableError, OSError):
    """Wraps an OSError raised by the underlying file system."""


class TableClosed(FoxTableError):
    """An operation was attempted on a closed table."""
