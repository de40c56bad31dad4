"""Shared concurrency primitives for batch extraction.

Two patterns are exposed:

1. **throttled_gather** -- A drop-in replacement for ``asyncio.gather`` that
   wraps each awaitable in a semaphore acquire/release.  The processing
   driver uses it to fan a batch of images out with bounded concurrency
   while each image's own phases stay sequential.

2. **KeyedLocks** -- A registry of per-key ``threading.Lock`` objects.  The
   Phase Manager guards each session and job entry with its own lock so
   that concurrently processed images never contend on unrelated keys.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Awaitable, TypeVar

_T = TypeVar("_T")

DEFAULT_CONCURRENCY = 10


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore | None = None,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently with semaphore throttling.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Optional semaphore for concurrency control.  A fresh semaphore of
        ``DEFAULT_CONCURRENCY`` slots is created per call when omitted, so
        separate batches never share a budget.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """
    if semaphore is None:
        semaphore = asyncio.Semaphore(DEFAULT_CONCURRENCY)

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


class KeyedLocks:
    """Lazily created ``threading.Lock`` per key.

    The registry lock is held only long enough to look up or create the
    per-key lock; callers then hold just that key's lock.
    """

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._lock_for(key):
            yield

    def discard(self, key: str) -> None:
        with self._registry_lock:
            self._locks.pop(key, None)

    def clear(self) -> None:
        with self._registry_lock:
            self._locks.clear()
