"""Async concurrency primitives used by the job runner."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``.

    ``is_cancelled`` and ``raise_if_cancelled`` are safe to call from worker threads;
    ``cancel`` must be called from the event loop thread.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError("operation cancelled")


class KeyedLock:
    """One ``asyncio.Lock`` per key; idle locks are dropped once nobody holds or waits."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @property
    def active_keys(self) -> tuple[str, ...]:
        return tuple(sorted(self._locks))

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._waiters[key] - 1
            if remaining:
                self._waiters[key] = remaining
            else:
                del self._waiters[key]
                del self._locks[key]


__all__ = [
    "CancellationToken",
    "KeyedLock",
]
