from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from januscope.errors import EngineError


logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PoolStats:
    size: int
    active: int
    completed: int
    queued: int

    def describe(self, label: str) -> str:
        return f"{label} Stats - Active: {self.active}, Completed: {self.completed}, Queue: {self.queued}"


class WorkerPool:
    """Fixed-capacity task pool on the running event loop.

    ``submit`` returns one task per unit of work; at most ``size`` units run at
    once and the rest wait for a slot. A unit that has a slot is bounded by
    ``timeout`` seconds; on expiry it is cancelled and ``on_timeout()`` supplies
    its result. A unit that raises is turned into ``on_error(exc)`` the same way.
    """

    def __init__(self, name: str, size: int):
        if int(size) < 1:
            raise EngineError(f"{name}: pool size must be >= 1, got {size}")
        self.name = name
        self.size = int(size)
        self._semaphore: asyncio.Semaphore | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._active = 0
        self._queued = 0
        self._completed = 0
        self._closed = True

    @property
    def is_open(self) -> bool:
        return not self._closed and self._semaphore is not None

    def open(self) -> None:
        if self.is_open:
            return
        self._semaphore = asyncio.Semaphore(self.size)
        self._closed = False
        logger.info("Worker pool started", pool=self.name, size=self.size)

    def stats(self) -> PoolStats:
        return PoolStats(size=self.size, active=self._active, completed=self._completed, queued=self._queued)

    def submit(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        timeout: float | None = None,
        on_timeout: Callable[[], T] | None = None,
        on_error: Callable[[BaseException], T] | None = None,
        label: str = "",
    ) -> asyncio.Task[T]:
        if not self.is_open:
            raise EngineError(f"{self.name}: pool is not running")
        self._queued += 1
        task = asyncio.get_running_loop().create_task(
            self._run(fn, timeout=timeout, on_timeout=on_timeout, on_error=on_error, label=label)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        timeout: float | None,
        on_timeout: Callable[[], T] | None,
        on_error: Callable[[BaseException], T] | None,
        label: str,
    ) -> T:
        if self._semaphore is None:
            raise EngineError(f"{self.name}: pool is not running")
        acquired = False
        try:
            await self._semaphore.acquire()
            acquired = True
        finally:
            self._queued -= 1
        self._active += 1
        try:
            if timeout is None:
                return await fn()
            return await asyncio.wait_for(fn(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error("Task timed out", pool=self.name, task=label, timeout_seconds=timeout)
            if on_timeout is None:
                raise
            return on_timeout()
        except Exception as exc:
            logger.exception("Task crashed", pool=self.name, task=label, error=f"{type(exc).__name__}: {exc}")
            if on_error is None:
                raise
            return on_error(exc)
        finally:
            self._active -= 1
            self._completed += 1
            if acquired:
                self._semaphore.release()

    async def shutdown(self, timeout: float) -> None:
        """Stop accepting work, wait up to ``timeout`` for in-flight tasks, then cancel the rest."""
        self._closed = True
        pending = set(self._tasks)
        if pending:
            logger.info("Draining worker pool", pool=self.name, pending=len(pending))
            _done, still_pending = await asyncio.wait(pending, timeout=max(0.0, float(timeout)))
            for task in still_pending:
                task.cancel()
            if still_pending:
                logger.warning("Cancelled unfinished tasks", pool=self.name, cancelled=len(still_pending))
                await asyncio.gather(*still_pending, return_exceptions=True)
        logger.info("Worker pool shut down", pool=self.name)
