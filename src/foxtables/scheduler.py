"""Ordering of table and memo I/O between asyncio tasks."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator

logger = logging.getLogger(__name__)


class IOScheduler:
    """Serializes mutations and coordinates readers with exclusive operations.

    - write(): one table mutation at a time, in acquisition order.
    - memo_write(): one memo allocation at a time.
    - read(): shared section around a single record read; never held across
      a scan's yield.
    - exclusive(): waits for in-flight readers and blocks new ones; used by
      compaction and close.
    """

    def __init__(self) -> None:
        self._write_lock = asyncio.Lock()
        self._memo_lock = asyncio.Lock()
        self._state = asyncio.Condition()
        self._readers = 0
        self._exclusive = False

    @contextlib.asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._write_lock:
            yield

    @contextlib.asynccontextmanager
    async def memo_write(self) -> AsyncIterator[None]:
        async with self._memo_lock:
            yield

    @contextlib.asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._state:
            await self._state.wait_for(lambda: not self._exclusive)
            self._readers += 1
        try:
            yield
        finally:
            async with self._state:
                self._readers -= 1
                self._state.notify_all()

    @contextlib.asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        async with self._write_lock, self._memo_lock:
            async with self._state:
                self._exclusive = True
                try:
                    await self._state.wait_for(lambda: self._readers == 0)
                except BaseException:
                    self._exclusive = False
                    self._state.notify_all()
                    raise
            logger.debug("Entered exclusive section")
            try:
                yield
            finally:
                async with self._state:
                    self._exclusive = False
                    self._state.notify_all()
