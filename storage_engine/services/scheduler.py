"""
Periodic task scheduling for the engine's top-level operations.

Each operation runs in its own asyncio task on a fixed interval. A failing tick
is logged and the loop keeps going.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..core.exceptions import StorageEngineError


class PeriodicTask:
    def __init__(
        self,
        name: str,
        operation: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        run_immediately: bool = True,
    ):
        self.name = name
        self._operation = operation
        self._interval_seconds = interval_seconds
        self._run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        self.runs = 0
        self.failures = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            logging.warning(f"Periodic task {self.name} already running")
            return
        self._task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")
        logging.info(f"Periodic task {self.name} started - every {self._interval_seconds}s")

    async def stop(self) -> None:
        if not self._task:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logging.info(f"Periodic task {self.name} stopped")

    async def run_once(self) -> None:
        self.runs += 1
        try:
            await self._operation()
        except StorageEngineError as e:
            self.failures += 1
            logging.error(f"{self.name} failed: {e}")
        except Exception as e:
            self.failures += 1
            logging.exception(f"Unexpected error in {self.name}: {e}")

    async def _loop(self) -> None:
        if not self._run_immediately:
            await asyncio.sleep(self._interval_seconds)
        while True:
            await self.run_once()
            await asyncio.sleep(self._interval_seconds)


class EngineScheduler:
    """Runs the startup validation, then keeps the periodic tasks alive until stopped."""

    def __init__(self, startup: Optional[Callable[[], Awaitable[Any]]] = None):
        self._startup = startup
        self._tasks: Dict[str, PeriodicTask] = {}

    def add(
        self,
        name: str,
        operation: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        run_immediately: bool = True,
    ) -> PeriodicTask:
        task = PeriodicTask(name, operation, interval_seconds, run_immediately)
        self._tasks[name] = task
        return task

    @property
    def tasks(self) -> List[PeriodicTask]:
        return list(self._tasks.values())

    async def start(self) -> None:
        if self._startup:
            try:
                await self._startup()
            except StorageEngineError as e:
                # Startup validation failure is reported; the watchdog takes over
                logging.error(f"Startup validation failed: {e}")
        for task in self._tasks.values():
            task.start()

    async def stop(self) -> None:
        await asyncio.gather(*(task.stop() for task in self._tasks.values()))
