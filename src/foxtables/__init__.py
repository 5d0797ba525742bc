"""foxtables - async reader/writer for FoxPro and Visual FoxPro tables."""

from foxtables.api import (
    append,
    close,
    compact,
    create,
    delete,
    flush,
    join,
    open,
    scan,
    undelete,
    update,
)
from foxtables.config import TableConfig, load_config
from foxtables.errors import (
    CorruptHeader,
    DuplicateFieldName,
    FieldDecodeError,
    FieldValueTypeMismatch,
    FoxTableError,
    IoFailure,
    MemoCorrupt,
    MemoOutOfRange,
    MissingMemoFile,
    OutOfRange,
    Overflow,
    TableClosed,
    UnsupportedDialect,
    UnsupportedFieldType,
)
from foxtables.header import FieldDescriptor, FormatDescriptor, TableHeader
from foxtables.join import Join
from foxtables.query import Scan
from foxtables.table import Table
from foxtables.types import Dialect, FieldType, MemoRef, Record, RecordError

__all__ = [
    # Main API
    "open",
    "create",
    "scan",
    "join",
    "append",
    "update",
    "delete",
    "undelete",
    "compact",
    "flush",
    "close",
    "Table",
    "Scan",
    "Join",
    # Configuration
    "TableConfig",
    "load_config",
    # Format
    "Dialect",
    "FieldType",
    "FieldDescriptor",
    "FormatDescriptor",
    "TableHeader",
    "MemoRef",
    "Record",
    "RecordError",
    # Errors
    "FoxTableError",
    "CorruptHeader",
    "UnsupportedDialect",
    "UnsupportedFieldType",
    "DuplicateFieldName",
    "OutOfRange",
    "FieldValueTypeMismatch",
    "Overflow",
    "FieldDecodeError",
    "MemoOutOfRange",
    "MemoCorrupt",
    "MissingMemoFile",
    "IoFailure",
    "TableClosed",
]

__version__ = "0.1.0"
