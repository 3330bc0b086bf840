"""Concurrency limiting for outstanding fetches."""

from __future__ import annotations

import asyncio
from types import TracebackType
from typing import Optional, Type

from pollwatch.errors import ConfigError


class ConcurrencyLimiter:
    """Cap the number of fetches in flight across all tracked keys."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ConfigError(f"concurrency must be at least 1, got {capacity}")
        self.capacity = capacity
        self._semaphore = asyncio.Semaphore(capacity)
        self.active = 0
        self.peak = 0

    async def acquire(self) -> None:
        await self._semaphore.acquire()
        self.active += 1
        self.peak = max(self.peak, self.active)

    def release(self) -> None:
        self.active -= 1
        self._semaphore.release()

    async def __aenter__(self) -> "ConcurrencyLimiter":
        await self.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.release()
