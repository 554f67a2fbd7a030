"""Process-wide cap on simultaneously running generation batches."""

from __future__ import annotations

import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

DEFAULT_LIMIT = 2


class ConcurrencyGate:
    """Counts in-flight batches.

    The gate is advisory: callers ask ``can_start`` before starting a batch,
    ``acquire`` itself never refuses. The count never drops below zero.
    """

    def __init__(self, limit: int = DEFAULT_LIMIT) -> None:
        if limit < 1:
            raise ValueError("并发上限必须至少为 1")
        self._limit = limit
        self._in_flight = 0
        self._lock = threading.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    def can_start(self) -> bool:
        with self._lock:
            return self._in_flight < self._limit

    def acquire(self) -> None:
        with self._lock:
            self._in_flight += 1

    def release(self) -> None:
        with self._lock:
            self._in_flight = max(0, self._in_flight - 1)

    @asynccontextmanager
    async def track(self) -> AsyncIterator["ConcurrencyGate"]:
        """Hold one slot for the duration of the block, released exactly once."""
        self.acquire()
        try:
            yield self
        finally:
            self.release()


_shared: Optional[ConcurrencyGate] = None
_shared_lock = threading.Lock()


def shared_gate(limit: int = DEFAULT_LIMIT) -> ConcurrencyGate:
    """Return the process-wide gate, creating it on first use."""
    global _shared
    with _shared_lock:
        if _shared is None:
            _shared = ConcurrencyGate(limit)
        return _shared
