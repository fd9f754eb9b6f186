"""Persistence operations the pipeline relies on.

The relational storage layer is an external collaborator; ``MonitorStore``
is the narrow contract the core calls, and ``InMemoryStore`` is a thread-safe
implementation used for tests, demos and single-process deployments.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Protocol

from januscope.models import (
    CertificateCheckResult,
    ContactGroup,
    CooldownKey,
    Incident,
    NotificationCooldown,
    Service,
    ServiceStatus,
    UptimeCheckResult,
)


class MonitorStore(Protocol):
    def list_active_services(self) -> list[Service]: ...

    def get_service(self, service_id: int) -> Service | None: ...

    def update_service_status(self, service_id: int, status: ServiceStatus, checked_at: datetime) -> None: ...

    def list_contact_groups(self, service_id: int) -> list[ContactGroup]: ...

    def save_uptime_result(self, result: UptimeCheckResult) -> None: ...

    def save_certificate_result(self, result: CertificateCheckResult) -> None: ...

    def latest_certificate_results(self) -> list[CertificateCheckResult]: ...

    def certificate_warnings(self, max_days: int) -> list[CertificateCheckResult]: ...

    def find_active_incident(self, service_id: int) -> Incident | None: ...

    def create_incident(self, service_id: int, started_at: datetime, error_message: str | None) -> Incident: ...

    def resolve_incident(self, incident_id: int, recovered_at: datetime) -> Incident: ...

    def get_cooldown(self, key: CooldownKey) -> NotificationCooldown | None: ...

    def save_cooldown(self, cooldown: NotificationCooldown) -> None: ...

    def cooldown_count(self) -> int: ...


class InMemoryStore:
    def __init__(
        self,
        services: Iterable[Service] = (),
        contact_groups: Iterable[ContactGroup] = (),
    ):
        self._lock = threading.Lock()
        self._services: dict[int, Service] = {s.service_id: s for s in services}
        self._groups: dict[int, ContactGroup] = {g.group_id: g for g in contact_groups}
        self._uptime: list[UptimeCheckResult] = []
        self._certificates: list[CertificateCheckResult] = []
        self._incidents: dict[int, Incident] = {}
        self._cooldowns: dict[CooldownKey, NotificationCooldown] = {}
        self._incident_ids = itertools.count(1)

    # --- services ---------------------------------------------------------

    def add_service(self, service: Service) -> None:
        with self._lock:
            self._services[service.service_id] = service

    def add_contact_group(self, group: ContactGroup) -> None:
        with self._lock:
            self._groups[group.group_id] = group

    def list_active_services(self) -> list[Service]:
        with self._lock:
            return [replace(s) for s in self._services.values() if s.is_active]

    def get_service(self, service_id: int) -> Service | None:
        with self._lock:
            svc = self._services.get(service_id)
            return replace(svc) if svc is not None else None

    def update_service_status(self, service_id: int, status: ServiceStatus, checked_at: datetime) -> None:
        with self._lock:
            svc = self._services.get(service_id)
            if svc is None:
                return
            svc.current_status = status
            svc.last_checked_at = checked_at

    def list_contact_groups(self, service_id: int) -> list[ContactGroup]:
        with self._lock:
            svc = self._services.get(service_id)
            if svc is None:
                return []
            return [
                self._groups[gid]
                for gid in svc.contact_group_ids
                if gid in self._groups and self._groups[gid].is_active
            ]

    # --- check history ----------------------------------------------------

    def save_uptime_result(self, result: UptimeCheckResult) -> None:
        with self._lock:
            self._uptime.append(result)

    def uptime_history(self, service_id: int) -> list[UptimeCheckResult]:
        with self._lock:
            return [r for r in self._uptime if r.service_id == service_id]

    def save_certificate_result(self, result: CertificateCheckResult) -> None:
        with self._lock:
            self._certificates.append(result)

    def certificate_history(self, service_id: int) -> list[CertificateCheckResult]:
        with self._lock:
            return [r for r in self._certificates if r.service_id == service_id]

    def latest_certificate_results(self) -> list[CertificateCheckResult]:
        latest: dict[int, CertificateCheckResult] = {}
        with self._lock:
            for r in self._certificates:
                prev = latest.get(r.service_id)
                if prev is None or prev.checked_at <= r.checked_at:
                    latest[r.service_id] = r
        return sorted(latest.values(), key=lambda r: r.service_id)

    def certificate_warnings(self, max_days: int) -> list[CertificateCheckResult]:
        return [
            r
            for r in self.latest_certificate_results()
            if r.days_remaining is not None and r.days_remaining <= int(max_days)
        ]

    # --- incidents --------------------------------------------------------

    def find_active_incident(self, service_id: int) -> Incident | None:
        with self._lock:
            return self._find_active_locked(service_id)

    def _find_active_locked(self, service_id: int) -> Incident | None:
        for incident in self._incidents.values():
            if incident.service_id == service_id and not incident.is_resolved:
                return incident
        return None

    def create_incident(self, service_id: int, started_at: datetime, error_message: str | None) -> Incident:
        with self._lock:
            existing = self._find_active_locked(service_id)
            if existing is not None:
                # One unresolved incident per service.
                return existing
            incident = Incident(
                incident_id=next(self._incident_ids),
                service_id=service_id,
                started_at=started_at,
                error_message=error_message,
            )
            self._incidents[incident.incident_id] = incident
            return incident

    def resolve_incident(self, incident_id: int, recovered_at: datetime) -> Incident:
        with self._lock:
            incident = self._incidents.get(incident_id)
            if incident is None:
                raise KeyError(f"Unknown incident {incident_id}")
            if incident.is_resolved:
                return incident
            resolved = replace(
                incident,
                recovered_at=recovered_at,
                duration_seconds=int((recovered_at - incident.started_at).total_seconds()),
                is_resolved=True,
            )
            self._incidents[incident_id] = resolved
            return resolved

    def incidents(self, service_id: int | None = None) -> list[Incident]:
        with self._lock:
            items = list(self._incidents.values())
        if service_id is not None:
            items = [i for i in items if i.service_id == service_id]
        return sorted(items, key=lambda i: i.incident_id)

    # --- notification cooldowns -------------------------------------------

    def get_cooldown(self, key: CooldownKey) -> NotificationCooldown | None:
        with self._lock:
            return self._cooldowns.get(key)

    def save_cooldown(self, cooldown: NotificationCooldown) -> None:
        with self._lock:
            self._cooldowns[cooldown.key] = cooldown

    def cooldown_count(self) -> int:
        with self._lock:
            return len(self._cooldowns)
