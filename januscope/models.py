from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


SERVICE_DOWN = "SERVICE_DOWN"
SERVICE_RECOVERED = "SERVICE_RECOVERED"


def ssl_expiry_event(threshold_days: int) -> str:
    return f"SSL_EXPIRY_{int(threshold_days)}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ServiceStatus(str, Enum):
    UP = "UP"
    DOWN = "DOWN"
    UNKNOWN = "UNKNOWN"


@dataclass
class Service:
    service_id: int
    name: str
    url: str
    check_interval_seconds: int = 300
    timeout_ms: int = 10_000
    max_retries: int = 3
    retry_delay_ms: int = 5_000
    current_status: ServiceStatus = ServiceStatus.UNKNOWN
    last_checked_at: datetime | None = None
    custom_headers: dict[str, str] = field(default_factory=dict)
    is_active: bool = True
    contact_group_ids: list[int] = field(default_factory=list)

    @property
    def is_https(self) -> bool:
        return str(self.url or "").strip().lower().startswith("https://")


@dataclass(frozen=True)
class ContactGroup:
    group_id: int
    name: str
    email_addresses: list[str] = field(default_factory=list)
    telegram_chat_ids: list[str] = field(default_factory=list)
    is_active: bool = True

    def recipient_for(self, channel: str) -> str | None:
        """
        Address string understood by the given channel, or None when the group
        has no member reachable through it.
        """
        name = str(channel or "").lower()
        if name == "email":
            return ", ".join(self.email_addresses) or None
        if name == "telegram":
            return ",".join(self.telegram_chat_ids) or None
        return self.name

    def channel_recipients(self) -> dict[str, str]:
        out: dict[str, str] = {}
        for channel in ("email", "telegram"):
            recipient = self.recipient_for(channel)
            if recipient:
                out[channel] = recipient
        return out


@dataclass(frozen=True)
class UptimeCheckResult:
    service_id: int
    status: ServiceStatus
    response_time_ms: int | None = None
    http_code: int | None = None
    error_message: str | None = None
    checked_at: datetime = field(default_factory=utc_now)

    @property
    def is_up(self) -> bool:
        return self.status is ServiceStatus.UP

    @classmethod
    def success(cls, service_id: int, response_time_ms: int, http_code: int) -> UptimeCheckResult:
        return cls(
            service_id=service_id,
            status=ServiceStatus.UP,
            response_time_ms=response_time_ms,
            http_code=http_code,
        )

    @classmethod
    def failure(
        cls,
        service_id: int,
        error_message: str,
        *,
        http_code: int | None = None,
        response_time_ms: int | None = None,
    ) -> UptimeCheckResult:
        return cls(
            service_id=service_id,
            status=ServiceStatus.DOWN,
            response_time_ms=response_time_ms,
            http_code=http_code,
            error_message=error_message,
        )


@dataclass(frozen=True)
class CertificateCheckResult:
    service_id: int
    domain: str | None
    is_valid: bool
    issuer: str | None = None
    subject: str | None = None
    valid_from: datetime | None = None
    valid_to: datetime | None = None
    # Signed: an already-expired certificate reports a negative count.
    days_remaining: int | None = None
    serial_number: str | None = None
    fingerprint: str | None = None
    algorithm: str | None = None
    key_size: int | None = None
    is_self_signed: bool = False
    error_message: str | None = None
    checked_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class Incident:
    incident_id: int
    service_id: int
    started_at: datetime
    recovered_at: datetime | None = None
    duration_seconds: int | None = None
    error_message: str | None = None
    is_resolved: bool = False


CooldownKey = tuple[int | None, int | None, str | None]


@dataclass(frozen=True)
class NotificationCooldown:
    service_id: int | None
    group_id: int | None
    event_type: str
    last_notified_at: datetime
    cooldown_until: datetime

    @property
    def key(self) -> CooldownKey:
        return (self.service_id, self.group_id, self.event_type)

    def is_active(self, now: datetime) -> bool:
        return now < self.cooldown_until


@dataclass(frozen=True)
class AlertRequest:
    recipient: str
    subject: str | None
    body: str
    event_type: str | None = None
    service_id: int | None = None
    group_id: int | None = None
    variables: dict[str, Any] = field(default_factory=dict)
    # Per-channel address overrides (e.g. {"email": "ops@x", "telegram": "-100123"}).
    channel_recipients: dict[str, str] = field(default_factory=dict)

    @property
    def cooldown_key(self) -> CooldownKey | None:
        if self.service_id is None or not self.event_type:
            return None
        return (self.service_id, self.group_id, self.event_type)

    def recipient_for(self, channel: str) -> str:
        return self.channel_recipients.get(str(channel or "").lower()) or self.recipient


@dataclass(frozen=True)
class AlertResult:
    channel: str
    success: bool
    error_message: str | None = None

    @classmethod
    def ok(cls, channel: str) -> AlertResult:
        return cls(channel=channel, success=True)

    @classmethod
    def failed(cls, channel: str, error_message: str) -> AlertResult:
        return cls(channel=channel, success=False, error_message=error_message)
