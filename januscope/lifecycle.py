from __future__ import annotations

from enum import Enum
from typing import Protocol

import structlog

from januscope.errors import EngineError


logger = structlog.get_logger(__name__)


class EngineStatus(str, Enum):
    UNINITIALIZED = "UNINITIALIZED"
    INITIALIZED = "INITIALIZED"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"
    FAILED = "FAILED"


class Engine(Protocol):
    name: str

    def initialize(self) -> None: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    def is_healthy(self) -> bool: ...


_ALLOWED: dict[EngineStatus, set[EngineStatus]] = {
    EngineStatus.INITIALIZED: {EngineStatus.UNINITIALIZED, EngineStatus.STOPPED},
    EngineStatus.RUNNING: {EngineStatus.INITIALIZED, EngineStatus.STOPPED},
    EngineStatus.STOPPED: {EngineStatus.RUNNING, EngineStatus.INITIALIZED, EngineStatus.FAILED},
}


class Lifecycle:
    """Tracks the lifecycle state of one component.

    Components own an instance instead of inheriting from a base engine class,
    and call the ``mark_*`` methods from their own initialize/start/stop.
    """

    def __init__(self, name: str):
        self.name = name
        self.status = EngineStatus.UNINITIALIZED
        self.error: str | None = None

    @property
    def is_running(self) -> bool:
        return self.status is EngineStatus.RUNNING

    def _move(self, target: EngineStatus) -> None:
        allowed = _ALLOWED.get(target, set())
        if self.status not in allowed:
            raise EngineError(f"{self.name}: cannot move from {self.status.value} to {target.value}")
        logger.debug("Lifecycle transition", engine=self.name, old=self.status.value, new=target.value)
        self.status = target

    def mark_initialized(self) -> None:
        self._move(EngineStatus.INITIALIZED)

    def mark_running(self) -> None:
        self._move(EngineStatus.RUNNING)

    def mark_stopped(self) -> None:
        if self.status is EngineStatus.STOPPED:
            return
        self._move(EngineStatus.STOPPED)

    def mark_failed(self, exc: BaseException) -> None:
        self.error = f"{type(exc).__name__}: {exc}"
        self.status = EngineStatus.FAILED
        logger.error("Engine failed", engine=self.name, error=self.error)
