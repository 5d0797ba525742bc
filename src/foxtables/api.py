"""Module-level entry points.

    table = await foxtables.create("people.dbf", "NAME C(20), AGE N(3,0), ACTIVE L")
    await foxtables.append(table, {"NAME": "Alice", "AGE": 30, "ACTIVE": True})
    adults = await foxtables.scan(table, "AGE > 26", ["NAME"]).collect()
    await foxtables.close(table)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from foxtables.config import TableConfig
from foxtables.join import Join, On
from foxtables.join import join as _join
from foxtables.query import Predicate, Scan
from foxtables.query import scan as _scan
from foxtables.table import FieldSpec, Table


async def open(path: str | Path, config: TableConfig | None = None) -> Table:
    """Open an existing table and its memo file."""
    return await Table.open(path, config)


async def create(
    path: str | Path,
    fields: str | Iterable[FieldSpec],
    config: TableConfig | None = None,
) -> Table:
    """Create a new table from descriptors, tuples or a structure string."""
    return await Table.create(path, fields, config)


def scan(
    table: Table,
    predicate: Predicate = None,
    projection: Sequence[str] | None = None,
) -> Scan:
    return _scan(table, predicate, projection)


def join(left: Any, right: Any, matcher: On) -> Join:
    return _join(left, right, matcher)


async def append(table: Table, values: Mapping[str, Any]) -> int:
    return await table.append(values)


async def update(table: Table, ordinal: int, values: Mapping[str, Any]) -> None:
    await table.update(ordinal, values)


async def delete(table: Table, ordinal: int) -> None:
    await table.delete(ordinal)


async def undelete(table: Table, ordinal: int) -> None:
    await table.undelete(ordinal)


async def compact(table: Table) -> int:
    return await table.compact()


async def flush(table: Table) -> None:
    await table.flush()


async def close(table: Table) -> None:
    await table.close()
