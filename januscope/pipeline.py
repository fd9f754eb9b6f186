"""One check cycle: probe, then coordinate incidents, then dispatch alerts.

The cadence is owned by the caller (``januscope.scheduler`` or any external
scheduler); each call runs exactly one cycle over the active services.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

import structlog

from januscope.alerts import AlertDispatcher
from januscope.channels import build_channels
from januscope.config import JanuscopeConfig
from januscope.incidents import IncidentCoordinator
from januscope.models import AlertRequest, AlertResult, CertificateCheckResult, UptimeCheckResult, utc_now
from januscope.orchestrator import CheckOrchestrator
from januscope.store import InMemoryStore, MonitorStore


logger = structlog.get_logger(__name__)


@dataclass
class CycleReport:
    checked: int = 0
    failing: int = 0
    alerts_raised: int = 0
    alert_results: list[AlertResult] = field(default_factory=list)

    @property
    def alerts_delivered(self) -> int:
        return sum(1 for r in self.alert_results if r.success)


class Pipeline:
    def __init__(
        self,
        config: JanuscopeConfig,
        store: MonitorStore,
        *,
        orchestrator: CheckOrchestrator | None = None,
        dispatcher: AlertDispatcher | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.store = store
        self.orchestrator = orchestrator or CheckOrchestrator(config)
        self.dispatcher = dispatcher or AlertDispatcher(
            config.notifications, store, build_channels(config.notifications), clock=clock
        )
        self.coordinator = IncidentCoordinator(
            store,
            config.certificates,
            templates=config.notifications.templates,
            clock=clock,
        )

    @classmethod
    def from_config(cls, config: JanuscopeConfig) -> Pipeline:
        store = InMemoryStore(config.service_models(), config.contact_group_models())
        return cls(config, store)

    async def start(self) -> None:
        self.orchestrator.initialize()
        self.dispatcher.initialize()
        await self.orchestrator.start()
        await self.dispatcher.start()

    async def stop(self) -> None:
        await self.orchestrator.stop()
        await self.dispatcher.stop()

    def is_healthy(self) -> bool:
        return self.orchestrator.is_healthy() and self.dispatcher.is_healthy()

    async def _dispatch(self, requests: list[AlertRequest]) -> list[AlertResult]:
        if not requests:
            return []
        channels = self.config.notifications.alert_channels
        tasks = [self.dispatcher.send_to_all_async(req, channels) for req in requests]
        results: list[AlertResult] = []
        for batch in await asyncio.gather(*tasks):
            results.extend(batch)
        for r in results:
            if not r.success:
                logger.info("Alert not delivered", channel=r.channel, reason=r.error_message)
        return results

    async def run_uptime_cycle(self, service_ids: list[int] | None = None) -> CycleReport:
        """Probe active services (optionally only ``service_ids``) once and act on the results."""
        services = self.store.list_active_services()
        if service_ids is not None:
            wanted = set(service_ids)
            services = [s for s in services if s.service_id in wanted]
        logger.info("Running uptime cycle", services=len(services))
        results: list[UptimeCheckResult] = await self.orchestrator.check_uptime_batch(services)

        requests: list[AlertRequest] = []
        for result in results:
            try:
                requests.extend(self.coordinator.process_uptime_result(result))
            except Exception:
                logger.exception("Failed to process uptime result", service_id=result.service_id)

        report = CycleReport(
            checked=len(results),
            failing=sum(1 for r in results if not r.is_up),
            alerts_raised=len(requests),
        )
        report.alert_results = await self._dispatch(requests)
        logger.info(
            "Uptime cycle completed",
            up=report.checked - report.failing,
            total=report.checked,
            alerts_raised=report.alerts_raised,
            alerts_delivered=report.alerts_delivered,
        )
        return report

    async def run_certificate_cycle(self) -> CycleReport:
        services = [s for s in self.store.list_active_services() if s.is_https]
        logger.info("Running certificate cycle", services=len(services))
        results: list[CertificateCheckResult] = await self.orchestrator.check_certificate_batch(services)

        requests: list[AlertRequest] = []
        for result in results:
            try:
                requests.extend(self.coordinator.process_certificate_result(result))
            except Exception:
                logger.exception("Failed to process certificate result", service_id=result.service_id)

        report = CycleReport(
            checked=len(results),
            failing=sum(1 for r in results if not r.is_valid),
            alerts_raised=len(requests),
        )
        report.alert_results = await self._dispatch(requests)
        logger.info(
            "Certificate cycle completed",
            valid=report.checked - report.failing,
            total=report.checked,
            alerts_raised=report.alerts_raised,
            alerts_delivered=report.alerts_delivered,
        )
        return report
