# src/graph_store/locks.py - v1
"""Adapter-internal synchronisation primitives.

ReadWriteLock guards the driver handle state; CriticalSection is the
single-token semaphore serialising schema-mutating operations. Both are
per adapter instance.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Writer-preferring asyncio reader/writer lock."""

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(
                lambda: not self._writer and self._writers_waiting == 0
            )
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            self._writers_waiting += 1
            try:
                await self._cond.wait_for(
                    lambda: not self._writer and self._readers == 0
                )
            finally:
                self._writers_waiting -= 1
                self._cond.notify_all()
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def writing(self) -> bool:
        return self._writer


class CriticalSection:
    """One-token semaphore; acquisition is cancellable by the caller."""

    def __init__(self) -> None:
        self._semaphore = asyncio.Semaphore(1)

    @asynccontextmanager
    async def hold(self, operation: str) -> AsyncIterator[None]:
        if self._semaphore.locked():
            logger.debug("Waiting for critical section: %s", operation)
        await self._semaphore.acquire()
        try:
            yield
        finally:
            self._semaphore.release()

    @property
    def locked(self) -> bool:
        return self._semaphore.locked()
