"""Monitoring engine: fans uptime and certificate checks out over a bounded pool."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

import httpx
import structlog

from januscope.config import JanuscopeConfig
from januscope.errors import EngineError
from januscope.lifecycle import Lifecycle
from januscope.models import CertificateCheckResult, Service, UptimeCheckResult
from januscope.pool import PoolStats, WorkerPool
from januscope.tls import CertificateInspector
from januscope.uptime import AvailabilityProber


logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CheckOrchestrator:
    name = "monitoring"

    def __init__(
        self,
        config: JanuscopeConfig,
        *,
        prober: AvailabilityProber | None = None,
        inspector: CertificateInspector | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.config = config
        self.lifecycle = Lifecycle(self.name)
        self.prober = prober
        self.inspector = inspector
        self.batch_wait_seconds = float(config.monitoring.batch_wait_seconds)
        self._http_client = http_client
        self._owns_client = http_client is None and prober is None
        self._pool = WorkerPool("monitoring", config.monitoring.pool_size)

    def initialize(self) -> None:
        monitoring = self.config.monitoring
        defaults = monitoring.defaults
        logger.info(
            "Monitoring defaults",
            timeout_ms=defaults.timeout_ms,
            max_retries=defaults.max_retries,
            retry_delay_ms=defaults.retry_delay_ms,
            pool_size=monitoring.pool_size,
        )
        if self.inspector is None:
            self.inspector = CertificateInspector(timeout_ms=self.config.certificates.timeout_ms)
        self.lifecycle.mark_initialized()

    async def start(self) -> None:
        try:
            if self.prober is None:
                if self._http_client is None:
                    self._http_client = httpx.AsyncClient(
                        limits=httpx.Limits(max_connections=self.config.monitoring.pool_size)
                    )
                self.prober = AvailabilityProber(self._http_client, user_agent=self.config.monitoring.user_agent)
            self._pool.open()
        except Exception as exc:
            self.lifecycle.mark_failed(exc)
            raise EngineError(f"Monitoring engine failed to start: {exc}") from exc
        self.lifecycle.mark_running()
        logger.info("Monitoring engine started", workers=self._pool.size)

    async def stop(self) -> None:
        await self._pool.shutdown(self.config.monitoring.shutdown_timeout_seconds)
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
            self.prober = None
        self.lifecycle.mark_stopped()
        logger.info("Monitoring engine stopped")

    def is_healthy(self) -> bool:
        return (
            self.lifecycle.is_running
            and self.prober is not None
            and self.inspector is not None
            and self._pool.is_open
        )

    def stats(self) -> PoolStats:
        return self._pool.stats()

    def get_stats(self) -> str:
        if not self._pool.is_open:
            return "Monitoring engine not running"
        return self.stats().describe("Monitoring")

    async def check_uptime(self, service: Service) -> UptimeCheckResult:
        if self.prober is None:
            raise EngineError("monitoring engine not started")
        return await self.prober.probe(service)

    async def check_certificate(self, service: Service) -> CertificateCheckResult:
        if self.inspector is None:
            raise EngineError("monitoring engine not initialized")
        return await self.inspector.inspect(service)

    async def check_uptime_batch(self, services: list[Service]) -> list[UptimeCheckResult]:
        logger.info("Starting batch uptime check", services=len(services))

        def _lost(service: Service) -> Callable[[], UptimeCheckResult]:
            return lambda: UptimeCheckResult.failure(
                service.service_id, f"Check timed out after {self.batch_wait_seconds:g}s"
            )

        def _crashed(service: Service) -> Callable[[BaseException], UptimeCheckResult]:
            return lambda exc: UptimeCheckResult.failure(service.service_id, f"{type(exc).__name__}: {exc}")

        results = await self._run_batch(services, self.check_uptime, _lost, _crashed)
        logger.info(
            "Batch uptime check completed",
            up=sum(1 for r in results if r.is_up),
            total=len(results),
        )
        return results

    async def check_certificate_batch(self, services: list[Service]) -> list[CertificateCheckResult]:
        logger.info("Starting batch certificate check", services=len(services))

        def _lost(service: Service) -> Callable[[], CertificateCheckResult]:
            return lambda: CertificateCheckResult(
                service_id=service.service_id,
                domain=None,
                is_valid=False,
                error_message=f"Check timed out after {self.batch_wait_seconds:g}s",
            )

        def _crashed(service: Service) -> Callable[[BaseException], CertificateCheckResult]:
            return lambda exc: CertificateCheckResult(
                service_id=service.service_id,
                domain=None,
                is_valid=False,
                error_message=f"{type(exc).__name__}: {exc}",
            )

        results = await self._run_batch(services, self.check_certificate, _lost, _crashed)
        logger.info(
            "Batch certificate check completed",
            valid=sum(1 for r in results if r.is_valid),
            total=len(results),
        )
        return results

    async def _run_batch(
        self,
        services: list[Service],
        check: Callable[[Service], Awaitable[T]],
        lost: Callable[[Service], Callable[[], T]],
        crashed: Callable[[Service], Callable[[BaseException], T]],
    ) -> list[T]:
        if not services:
            return []
        tasks = [
            self._pool.submit(
                lambda s=service: check(s),
                timeout=self.batch_wait_seconds,
                on_timeout=lost(service),
                on_error=crashed(service),
                label=f"service-{service.service_id}",
            )
            for service in services
        ]
        # The pool converts timeouts and crashes into results, so this only
        # raises if the caller itself is cancelled.
        return list(await asyncio.gather(*tasks))
