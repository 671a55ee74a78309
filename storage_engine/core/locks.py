"""
Advisory per-resource locks.

One asyncio.Lock per resource key (mount point, volume, repository). Two
operations on the same resource are serialized; unrelated resources never
contend.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Literal, Optional

from .exceptions import OperationInProgressError

LockMode = Literal["block", "fail_fast"]


class ResourceLocks:
    def __init__(self, mode: LockMode = "fail_fast", timeout_seconds: Optional[float] = 60.0):
        self._mode = mode
        self._timeout_seconds = timeout_seconds
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, str] = {}

    @property
    def mode(self) -> LockMode:
        return self._mode

    def is_locked(self, resource: str) -> bool:
        lock = self._locks.get(resource)
        return lock is not None and lock.locked()

    def holder(self, resource: str) -> Optional[str]:
        return self._holders.get(resource)

    @asynccontextmanager
    async def hold(
        self, resource: str, operation: str, mode: Optional[LockMode] = None
    ) -> AsyncIterator[None]:
        """
        Hold the lock for resource while operation runs.

        mode overrides the configured lock mode for this call.

        Raises:
            OperationInProgressError: fail_fast mode and the lock is taken, or
                block mode and the lock did not free up within the timeout.
        """
        lock = self._locks.setdefault(resource, asyncio.Lock())

        if (mode or self._mode) == "fail_fast":
            if lock.locked():
                raise OperationInProgressError(resource, operation, self._holders.get(resource))
            await lock.acquire()
        else:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self._timeout_seconds)
            except asyncio.TimeoutError:
                raise OperationInProgressError(resource, operation, self._holders.get(resource))

        self._holders[resource] = operation
        logging.debug(f"Lock acquired: {resource} ({operation})")
        try:
            yield
        finally:
            self._holders.pop(resource, None)
            lock.release()
            logging.debug(f"Lock released: {resource} ({operation})")
