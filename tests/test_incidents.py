from __future__ import annotations

from datetime import timedelta

import pytest

from januscope.config import CertificateSettings, TemplateSettings
from januscope.incidents import IncidentCoordinator, expiry_threshold
from januscope.models import (
    SERVICE_DOWN,
    SERVICE_RECOVERED,
    CertificateCheckResult,
    ServiceStatus,
    UptimeCheckResult,
)


def _down(clock, error: str = "HTTP 502", code: int | None = 502) -> UptimeCheckResult:
    return UptimeCheckResult(
        service_id=1, status=ServiceStatus.DOWN, http_code=code, error_message=error, checked_at=clock()
    )


def _up(clock) -> UptimeCheckResult:
    return UptimeCheckResult(service_id=1, status=ServiceStatus.UP, http_code=200, response_time_ms=12, checked_at=clock())


@pytest.fixture
def coordinator(store, clock) -> IncidentCoordinator:
    return IncidentCoordinator(store, CertificateSettings(), clock=clock)


def test_first_failure_opens_incident_and_raises_alert(coordinator, store, clock) -> None:
    requests = coordinator.process_uptime_result(_down(clock))

    incidents = store.incidents(1)
    assert len(incidents) == 1
    assert incidents[0].is_resolved is False
    assert incidents[0].error_message == "HTTP 502"

    assert len(requests) == 1
    req = requests[0]
    assert req.event_type == SERVICE_DOWN
    assert req.service_id == 1
    assert req.group_id == 10
    assert req.recipient == "ops"
    assert req.channel_recipients == {"email": "ops@example.com, oncall@example.com", "telegram": "-1001,-1002"}
    assert req.variables["error_message"] == "HTTP 502"
    assert req.variables["http_code"] == "502"

    svc = store.get_service(1)
    assert svc.current_status is ServiceStatus.DOWN
    assert svc.last_checked_at == clock()


def test_repeated_failure_neither_alerts_nor_opens_second_incident(coordinator, store, clock) -> None:
    coordinator.process_uptime_result(_down(clock))
    clock.advance(60)
    assert coordinator.process_uptime_result(_down(clock, error="timeout", code=None)) == []
    assert len(store.incidents(1)) == 1
    assert store.get_service(1).last_checked_at == clock()


def test_recovery_resolves_incident_with_duration(coordinator, store, clock) -> None:
    coordinator.process_uptime_result(_down(clock))
    clock.advance(90)
    requests = coordinator.process_uptime_result(_up(clock))

    incident = store.incidents(1)[0]
    assert incident.is_resolved is True
    assert incident.recovered_at == clock()
    assert incident.duration_seconds == 90
    assert store.find_active_incident(1) is None

    assert [r.event_type for r in requests] == [SERVICE_RECOVERED]
    assert requests[0].variables["downtime_duration"] == "1m 30s"
    assert store.get_service(1).current_status is ServiceStatus.UP


def test_steady_up_is_quiet(coordinator, store, clock) -> None:
    assert coordinator.process_uptime_result(_up(clock)) == []
    assert coordinator.process_uptime_result(_up(clock)) == []
    assert store.incidents(1) == []
    assert len(store.uptime_history(1)) == 2


def test_unknown_to_down_reuses_incident_left_open(coordinator, store, clock) -> None:
    # An incident survived a restart while the status went back to UNKNOWN.
    store.create_incident(1, clock() - timedelta(minutes=5), "earlier")
    assert coordinator.process_uptime_result(_down(clock)) == []
    assert len(store.incidents(1)) == 1
    assert store.get_service(1).current_status is ServiceStatus.DOWN


def test_unknown_to_up_without_incident_sends_nothing(coordinator, store, clock) -> None:
    assert coordinator.process_uptime_result(_up(clock)) == []
    assert store.get_service(1).current_status is ServiceStatus.UP


def test_result_for_unknown_service_is_ignored(coordinator, store, clock) -> None:
    result = UptimeCheckResult.failure(99, "nope")
    assert coordinator.process_uptime_result(result) == []
    assert store.incidents() == []


def test_template_override_is_used(store, clock) -> None:
    coordinator = IncidentCoordinator(
        store,
        CertificateSettings(),
        templates={SERVICE_DOWN: TemplateSettings(subject="[DOWN] {{service_name}}", body="{{error_message}}")},
        clock=clock,
    )
    req = coordinator.process_uptime_result(_down(clock))[0]
    assert req.subject == "[DOWN] {{service_name}}"
    assert req.body == "{{error_message}}"


@pytest.mark.parametrize(
    ("days", "expected"),
    [(45, None), (30, 30), (20, 30), (14, 14), (8, 14), (7, 7), (3, 3), (0, 3), (-5, 3), (None, None)],
)
def test_expiry_threshold_picks_tightest_crossed(days, expected) -> None:
    assert expiry_threshold(days, [30, 14, 7, 3]) == expected


def test_certificate_near_expiry_raises_threshold_event(coordinator, store, clock) -> None:
    result = CertificateCheckResult(
        service_id=1,
        domain="web.example.com",
        is_valid=True,
        issuer="CN=Test CA",
        valid_to=clock() + timedelta(days=5),
        days_remaining=5,
    )
    requests = coordinator.process_certificate_result(result)

    assert [r.event_type for r in requests] == ["SSL_EXPIRY_7"]
    assert requests[0].variables["days_remaining"] == 5
    assert requests[0].variables["threshold_days"] == 7
    assert requests[0].variables["domain"] == "web.example.com"
    assert store.certificate_history(1) == [result]


def test_certificate_far_from_expiry_is_quiet(coordinator, store) -> None:
    result = CertificateCheckResult(service_id=1, domain="web.example.com", is_valid=True, days_remaining=80)
    assert coordinator.process_certificate_result(result) == []
    assert len(store.certificate_history(1)) == 1
    assert store.certificate_warnings(30) == []
