"""Turns probe results into incident records and alert requests."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

import structlog

from januscope.config import CertificateSettings, TemplateSettings
from januscope.models import (
    SERVICE_DOWN,
    SERVICE_RECOVERED,
    AlertRequest,
    CertificateCheckResult,
    ContactGroup,
    Service,
    ServiceStatus,
    UptimeCheckResult,
    ssl_expiry_event,
    utc_now,
)
from januscope.store import MonitorStore
from januscope.templates import AlertTemplate, default_template, format_duration


logger = structlog.get_logger(__name__)


def expiry_threshold(days_remaining: int | None, thresholds: list[int]) -> int | None:
    """Tightest threshold the certificate has dropped to or below, if any."""
    if days_remaining is None:
        return None
    crossed = [int(t) for t in thresholds if days_remaining <= int(t)]
    return min(crossed) if crossed else None


class IncidentCoordinator:
    """State machine over persisted service status (UNKNOWN, UP, DOWN).

    ``UP|UNKNOWN -> DOWN`` opens an incident unless one is already open;
    ``DOWN|UNKNOWN -> UP`` resolves the open incident; an unchanged status
    leaves incidents alone. The service status and last-checked time are
    written after every result.
    """

    def __init__(
        self,
        store: MonitorStore,
        certificates: CertificateSettings,
        *,
        templates: dict[str, TemplateSettings] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.thresholds = list(certificates.expiry_thresholds_days)
        self.templates = dict(templates or {})
        self.clock = clock

    def _template(self, event_type: str) -> AlertTemplate:
        override = self.templates.get(event_type)
        if override is not None:
            return AlertTemplate(subject=override.subject, body=override.body)
        return default_template(event_type)

    def _requests_for(self, service: Service, event_type: str, variables: dict[str, Any]) -> list[AlertRequest]:
        template = self._template(event_type)
        groups: list[ContactGroup] = self.store.list_contact_groups(service.service_id)
        if not groups:
            logger.info("No contact groups attached; alert not raised", service=service.name, event_type=event_type)
        return [
            AlertRequest(
                recipient=group.name,
                subject=template.subject,
                body=template.body,
                event_type=event_type,
                service_id=service.service_id,
                group_id=group.group_id,
                variables=dict(variables),
                channel_recipients=group.channel_recipients(),
            )
            for group in groups
        ]

    def process_uptime_result(self, result: UptimeCheckResult) -> list[AlertRequest]:
        service = self.store.get_service(result.service_id)
        if service is None:
            logger.warning("Result for unknown service ignored", service_id=result.service_id)
            return []

        previous = service.current_status
        self.store.save_uptime_result(result)

        alerts: list[AlertRequest] = []
        try:
            if result.status is ServiceStatus.DOWN and previous is not ServiceStatus.DOWN:
                alerts = self._on_down(service, result)
            elif result.status is ServiceStatus.UP and previous is not ServiceStatus.UP:
                alerts = self._on_up(service)
        finally:
            self.store.update_service_status(service.service_id, result.status, result.checked_at)
        return alerts

    def _on_down(self, service: Service, result: UptimeCheckResult) -> list[AlertRequest]:
        existing = self.store.find_active_incident(service.service_id)
        if existing is not None:
            logger.info(
                "Service DOWN, reusing open incident",
                service=service.name,
                incident_id=existing.incident_id,
            )
            return []

        incident = self.store.create_incident(service.service_id, result.checked_at, result.error_message)
        logger.warning(
            "Service DOWN, incident opened",
            service=service.name,
            incident_id=incident.incident_id,
            error=result.error_message,
        )
        return self._requests_for(
            service,
            SERVICE_DOWN,
            {
                "service_name": service.name,
                "service_url": service.url,
                "down_time": incident.started_at.isoformat(),
                "error_message": result.error_message or "Unknown",
                "http_code": str(result.http_code) if result.http_code is not None else "N/A",
                "incident_id": incident.incident_id,
            },
        )

    def _on_up(self, service: Service) -> list[AlertRequest]:
        incident = self.store.find_active_incident(service.service_id)
        if incident is None:
            return []

        resolved = self.store.resolve_incident(incident.incident_id, self.clock())
        logger.info(
            "Service recovered, incident resolved",
            service=service.name,
            incident_id=resolved.incident_id,
            duration_seconds=resolved.duration_seconds,
        )
        recovered_at = resolved.recovered_at or self.clock()
        return self._requests_for(
            service,
            SERVICE_RECOVERED,
            {
                "service_name": service.name,
                "service_url": service.url,
                "downtime_duration": format_duration(resolved.duration_seconds),
                "downtime_seconds": resolved.duration_seconds,
                "recovered_time": recovered_at.isoformat(),
                "incident_id": resolved.incident_id,
            },
        )

    def process_certificate_result(self, result: CertificateCheckResult) -> list[AlertRequest]:
        self.store.save_certificate_result(result)

        threshold = expiry_threshold(result.days_remaining, self.thresholds)
        if threshold is None:
            return []
        service = self.store.get_service(result.service_id)
        if service is None:
            logger.warning("Certificate result for unknown service ignored", service_id=result.service_id)
            return []

        logger.warning(
            "Certificate expiring",
            service=service.name,
            days_remaining=result.days_remaining,
            threshold_days=threshold,
        )
        return self._requests_for(
            service,
            ssl_expiry_event(threshold),
            {
                "service_name": service.name,
                "service_url": service.url,
                "domain": result.domain or "",
                "days_remaining": result.days_remaining,
                "threshold_days": threshold,
                "expiry_date": result.valid_to.isoformat() if result.valid_to else "unknown",
                "issuer": result.issuer or "unknown",
            },
        )
