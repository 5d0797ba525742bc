"""Nested-loop inner join of two record streams."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterable, AsyncIterator, Callable, Union

from foxtables.query import Pipeline
from foxtables.types import Record, RecordError

logger = logging.getLogger(__name__)

Matcher = Callable[[Any, Record], bool]
On = Union[Matcher, tuple[str, str]]


def _lookup(item: Any, name: str) -> Any:
    """Return a field value from a record or the first tuple member holding it."""
    if isinstance(item, tuple):
        for record in item:
            if name in record:
                return record[name]
        raise KeyError(f"Field '{name}' not found in joined records")
    return item[name]


def field_matcher(left_field: str, right_field: str) -> Matcher:
    """Build a matcher comparing one left field with one right field for equality."""

    def match(left: Any, right: Record) -> bool:
        value = _lookup(left, left_field)
        return value is not None and value == right[right_field]

    return match


class Join(Pipeline):
    """Inner join yielding (left, right) pairs.

    Output is left-major: for every left item, matching right records follow
    in right-side order.  The right side is read once per iteration and held
    in memory; the left side streams.  A left item that is itself a joined
    tuple is extended, so chained joins yield flat (a, b, c) tuples.  Error
    items from either side are logged and skipped.
    """

    def __init__(
        self,
        left: AsyncIterable[Any],
        right: AsyncIterable[Any],
        matcher: On,
    ) -> None:
        self.left = left
        self.right = right
        if isinstance(matcher, tuple):
            matcher = field_matcher(*matcher)
        self.matcher = matcher

    async def _iterate(self) -> AsyncIterator[tuple[Any, ...]]:
        right_items: list[Any] = []
        async for item in self.right:
            if isinstance(item, RecordError):
                logger.warning("Join skipped right record %d: %s", item.ordinal, item.error)
                continue
            right_items.append(item)

        async for left in self.left:
            if isinstance(left, RecordError):
                logger.warning("Join skipped left record %d: %s", left.ordinal, left.error)
                continue
            prefix = left if isinstance(left, tuple) else (left,)
            for right in right_items:
                if self.matcher(left, right):
                    yield (*prefix, right)


def join(left: AsyncIterable[Any], right: AsyncIterable[Any], matcher: On) -> Join:
    """Build a lazy inner join of two scans (or joins).

    matcher is a callable ``(left_item, right_record) -> bool`` or a pair of
    field names compared for equality.
    """
    return Join(left, right, matcher)
