"""
Admission gate limiting how many generation calls reach the backend at once.

Local inference backends crash or run out of memory when asked to serve
more than one generation concurrently, so every call funnels through a
gate. The capacity is configuration (``Settings.gate_capacity``), the
default of 1 turns any number of callers into a strictly serialized
stream of backend calls.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


class AdmissionGate:
    """
    Counting gate with scoped acquisition.

    Waiters suspend (no busy waiting) and are admitted in roughly FIFO
    order. Prefer ``async with gate.slot():`` over manual acquire/release
    so the slot is freed on every exit path, including cancellation.
    """

    def __init__(self, capacity: int = 1):
        if capacity < 1:
            raise ValueError("Gate capacity must be at least 1")
        self.capacity = capacity
        self._semaphore = asyncio.Semaphore(capacity)
        self._in_use = 0

    @property
    def in_use(self) -> int:
        """Number of occupied slots."""
        return self._in_use

    @property
    def locked(self) -> bool:
        """True when every slot is occupied."""
        return self._semaphore.locked()

    async def acquire(self) -> None:
        await self._semaphore.acquire()
        self._in_use += 1

    def release(self) -> None:
        if self._in_use == 0:
            raise RuntimeError("AdmissionGate.release() called without a held slot")
        self._in_use -= 1
        self._semaphore.release()

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one slot for the duration of the block."""
        if self.locked:
            logger.debug("Backend busy, waiting for a free slot (capacity=%d)", self.capacity)
        await self.acquire()
        try:
            yield
        finally:
            self.release()
