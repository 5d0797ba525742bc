"""Lazy, restartable scans over a table's records."""

from __future__ import annotations

import copy
import logging
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Sequence, TypeVar, Union

from foxtables.errors import CorruptHeader, FieldDecodeError, OutOfRange
from foxtables.types import Record, RecordError

if TYPE_CHECKING:
    from foxtables.table import Table

logger = logging.getLogger(__name__)

Predicate = Union[Callable[[Record], bool], str, None]
T = TypeVar("T")
P = TypeVar("P", bound="Pipeline")


class Pipeline:
    """Base of scans and joins: an async iterable with terminal helpers.

    Iterating again starts over from the first record.
    """

    _limit: int | None = None

    def _iterate(self) -> AsyncIterator[Any]:
        raise NotImplementedError

    def __aiter__(self) -> AsyncIterator[Any]:
        return self._limited()

    async def _limited(self) -> AsyncIterator[Any]:
        if self._limit is not None and self._limit <= 0:
            return
        emitted = 0
        async for item in self._iterate():
            yield item
            if isinstance(item, RecordError):
                continue
            emitted += 1
            if self._limit is not None and emitted >= self._limit:
                return

    def limit(self: P, n: int) -> P:
        """Return a copy that stops after n result items (errors not counted)."""
        if n < 0:
            raise ValueError(f"Limit must not be negative, got {n}")
        clone = copy.copy(self)
        clone._limit = n
        return clone

    async def collect(self) -> list[Any]:
        """Run the pipeline and return every item, error items included."""
        return [item async for item in self]

    async def aggregate(self, initial: T, op: Callable[[T, Any], T]) -> T:
        """Fold op over the result items, skipping error items."""
        acc = initial
        async for item in self:
            if isinstance(item, RecordError):
                logger.warning("Aggregate skipped record %d: %s", item.ordinal, item.error)
                continue
            acc = op(acc, item)
        return acc

    async def count(self) -> int:
        return await self.aggregate(0, lambda n, _: n + 1)


class Scan(Pipeline):
    """Records of one table that pass a predicate, optionally projected.

    Each step reads and decodes one record.  The record count is checked on
    every step, so records appended during a scan may be observed.
    Tombstoned records are skipped; records that fail to decode, or that a
    truncated file cuts off, are yielded as RecordError items.
    """

    def __init__(
        self,
        table: Table,
        predicate: Predicate = None,
        projection: Sequence[str] | None = None,
    ) -> None:
        self.table = table
        if isinstance(predicate, str):
            from foxtables.parsing import compile_filter

            self.filter_text: str | None = predicate
            predicate = compile_filter(predicate)
            for name in predicate.fields:
                table.descriptor.get_field(name)
        else:
            self.filter_text = None
        self.predicate = predicate
        if projection is not None:
            projection = [table.descriptor.get_field(name).name for name in projection]
        self.projection = projection

    async def _iterate(self) -> AsyncIterator[Record | RecordError]:
        self.table._require_open()
        records = self.table.records
        ordinal = 0
        while ordinal < records.count:
            try:
                record = await records.read(ordinal)
            except (FieldDecodeError, CorruptHeader) as e:
                yield RecordError(ordinal, e)
                ordinal += 1
                continue
            except OutOfRange:
                # Table shrank under the scan (compaction)
                logger.debug("Scan of %s stopped at ordinal %d", self.table.path, ordinal)
                return
            ordinal += 1
            if record.deleted:
                continue
            if self.predicate is not None and not self.predicate(record):
                continue
            if self.projection is not None:
                record = record.project(self.projection)
            yield record

    def __repr__(self) -> str:
        parts = [str(self.table.path)]
        if self.filter_text:
            parts.append(f"where {self.filter_text!r}")
        if self.projection:
            parts.append(f"select {', '.join(self.projection)}")
        return f"Scan({'; '.join(parts)})"


def scan(
    table: Table,
    predicate: Predicate = None,
    projection: Sequence[str] | None = None,
) -> Scan:
    """Build a lazy scan; no I/O happens until it is iterated.

    The predicate is a callable taking a Record, or a filter expression such
    as ``AGE > 26 AND NAME STARTS WITH "Al"``.

    Raises:
        KeyError: If a projected name is not a field of the table.
        SyntaxError: If a filter expression cannot be parsed.
    """
    return Scan(table, predicate, projection)
