"""Background task scheduler owned by the application lifespan."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .utils.request_id import bound_request_id, generate_request_id

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[object]]


class PeriodicTask:
    """Runs `job` every `interval` seconds.

    `run_once` may also be called directly (tests, admin triggers); a call that
    finds a run in progress is skipped, never queued. `stop` lets an in-flight
    run finish and only cancels it after `stop_timeout` seconds.
    """

    def __init__(self, name: str, job: JobFactory, *, interval: float, stop_timeout: float = 30.0) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.job = job
        self.interval = interval
        self.stop_timeout = stop_timeout
        self.runs = 0
        self.skipped = 0
        self._run_lock = asyncio.Lock()
        self._stopping = asyncio.Event()
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> bool:
        """Run the job now unless a run is in progress. Returns False when skipped."""
        if self._run_lock.locked():
            self.skipped += 1
            logger.debug("Task %s still running, skipping tick", self.name)
            return False
        async with self._run_lock:
            self.runs += 1
            try:
                with bound_request_id(generate_request_id(self.name)):
                    await self.job()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Task %s failed", self.name)
        return True

    async def _loop(self) -> None:
        while not self._stopping.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        done, _ = await asyncio.wait({self._task}, timeout=self.stop_timeout)
        if not done:
            logger.warning("Task %s did not finish within %ss, cancelling", self.name, self.stop_timeout)
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                logger.info("Task %s cancelled", self.name)
        self._task = None


class Scheduler:
    def __init__(self) -> None:
        self.tasks: dict[str, PeriodicTask] = {}
        self.started = False

    def add(self, name: str, job: JobFactory, *, interval: float) -> PeriodicTask:
        if name in self.tasks:
            raise ValueError(f"task {name!r} already registered")
        task = PeriodicTask(name, job, interval=interval)
        self.tasks[name] = task
        if self.started:
            task.start()
        return task

    def start(self) -> None:
        for task in self.tasks.values():
            task.start()
        self.started = True
        logger.info("Scheduler started: %s", ", ".join(self.tasks) or "no tasks")

    async def stop(self) -> None:
        for task in self.tasks.values():
            await task.stop()
        self.started = False
        logger.info("Scheduler stopped")
