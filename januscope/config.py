"""Configuration management for januscope."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from januscope.errors import ConfigError
from januscope.models import ContactGroup, Service


KNOWN_CHANNELS = ("console", "telegram", "email")


class MonitoringDefaults(BaseModel):
    """Per-service probe defaults, used when a service does not set its own."""
    timeout_ms: int = Field(default=10_000, ge=1000, description="Connect/read timeout per attempt")
    max_retries: int = Field(default=3, ge=0, le=10, description="Attempts per probe")
    retry_delay_ms: int = Field(default=5_000, ge=0, description="Delay between attempts")
    check_interval_seconds: int = Field(default=300, ge=1, description="Default check interval")


class MonitoringSettings(BaseModel):
    defaults: MonitoringDefaults = Field(default_factory=MonitoringDefaults)
    pool_size: int = Field(default=50, ge=1, description="Max concurrent probes")
    batch_wait_seconds: float = Field(default=30.0, gt=0, description="Per-target ceiling inside a batch")
    shutdown_timeout_seconds: float = Field(default=10.0, ge=0, description="Drain time on stop")
    user_agent: str = Field(default="Januscope/1.0.0", description="Identifying User-Agent header")


class CertificateSettings(BaseModel):
    expiry_thresholds_days: list[int] = Field(
        default_factory=lambda: [30, 14, 7, 3], description="Expiry alert thresholds in days"
    )
    timeout_ms: int = Field(default=10_000, ge=1000, description="TLS connect/handshake timeout")
    check_interval_hours: int = Field(default=24, ge=1, description="Certificate check frequency")

    @field_validator("expiry_thresholds_days", mode="before")
    @classmethod
    def _split_thresholds(cls, value: Any) -> Any:
        # Accept the legacy "30,14,7,3" settings string.
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("expiry_thresholds_days")
    @classmethod
    def _sort_thresholds(cls, value: list[int]) -> list[int]:
        if any(int(v) <= 0 for v in value):
            raise ValueError("expiry thresholds must be positive day counts")
        return sorted({int(v) for v in value}, reverse=True)


class SmtpSettings(BaseModel):
    host: str = Field(default="", description="SMTP host")
    port: int = Field(default=587, description="SMTP port")
    username: str = Field(default="", description="SMTP username")
    password: str = Field(default="", description="SMTP password")
    use_tls: bool = Field(default=True, description="STARTTLS (True) or implicit SSL (False)")
    from_address: str = Field(default="", description="Envelope/From address")
    timeout_seconds: float = Field(default=30.0, gt=0)


class EmailSettings(BaseModel):
    enabled: bool = False
    smtp: SmtpSettings = Field(default_factory=SmtpSettings)


class TelegramSettings(BaseModel):
    enabled: bool = False
    bot_token: str = Field(default="", description="Bot API token")
    api_url: str = Field(default="https://api.telegram.org", description="Bot API base URL")
    timeout_seconds: float = Field(default=15.0, gt=0)


class TemplateSettings(BaseModel):
    subject: Optional[str] = None
    body: str


class NotificationSettings(BaseModel):
    cooldown_seconds: int = Field(default=300, ge=0, description="Default cooldown between duplicate alerts")
    event_cooldown_seconds: dict[str, int] = Field(
        default_factory=dict, description="Per event type cooldown overrides"
    )
    pool_size: int = Field(default=10, ge=1, description="Max concurrent asynchronous sends")
    shutdown_timeout_seconds: float = Field(default=10.0, ge=0)
    alert_channels: list[str] = Field(
        default_factory=lambda: ["console"], description="Channels used for pipeline alerts"
    )
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    email: EmailSettings = Field(default_factory=EmailSettings)
    templates: dict[str, TemplateSettings] = Field(default_factory=dict, description="Per event overrides")

    @field_validator("alert_channels")
    @classmethod
    def _known_channels(cls, value: list[str]) -> list[str]:
        names = [str(v).strip().lower() for v in value]
        unknown = [n for n in names if n not in KNOWN_CHANNELS]
        if unknown:
            raise ValueError(f"unknown alert channel(s) {unknown}; expected one of {list(KNOWN_CHANNELS)}")
        return names

    def cooldown_for(self, event_type: str | None) -> int:
        if event_type and event_type in self.event_cooldown_seconds:
            return int(self.event_cooldown_seconds[event_type])
        return int(self.cooldown_seconds)


class ContactGroupEntry(BaseModel):
    group_id: int
    name: str
    email_addresses: list[str] = Field(default_factory=list)
    telegram_chat_ids: list[str] = Field(default_factory=list)
    is_active: bool = True

    @field_validator("telegram_chat_ids", mode="before")
    @classmethod
    def _chat_ids_as_str(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [str(v) for v in value]
        return value

    def to_model(self) -> ContactGroup:
        return ContactGroup(
            group_id=self.group_id,
            name=self.name,
            email_addresses=list(self.email_addresses),
            telegram_chat_ids=list(self.telegram_chat_ids),
            is_active=self.is_active,
        )


class ServiceEntry(BaseModel):
    service_id: int
    name: str
    url: str
    check_interval_seconds: Optional[int] = None
    timeout_ms: Optional[int] = None
    max_retries: Optional[int] = Field(default=None, ge=0, le=10)
    retry_delay_ms: Optional[int] = None
    custom_headers: dict[str, str] = Field(default_factory=dict)
    is_active: bool = True
    contact_groups: list[int] = Field(default_factory=list)

    def to_model(self, defaults: MonitoringDefaults) -> Service:
        return Service(
            service_id=self.service_id,
            name=self.name,
            url=self.url,
            check_interval_seconds=self.check_interval_seconds or defaults.check_interval_seconds,
            timeout_ms=self.timeout_ms or defaults.timeout_ms,
            max_retries=defaults.max_retries if self.max_retries is None else self.max_retries,
            retry_delay_ms=defaults.retry_delay_ms if self.retry_delay_ms is None else self.retry_delay_ms,
            custom_headers=dict(self.custom_headers),
            is_active=self.is_active,
            contact_group_ids=list(self.contact_groups),
        )


class JanuscopeConfig(BaseModel):
    """Main configuration for januscope."""

    log_level: str = Field(default="INFO", description="Logging level")
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    certificates: CertificateSettings = Field(default_factory=CertificateSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)

    # Seed data for the in-memory store (the relational store lives elsewhere).
    contact_groups: list[ContactGroupEntry] = Field(default_factory=list)
    services: list[ServiceEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_references(self) -> JanuscopeConfig:
        group_ids = [g.group_id for g in self.contact_groups]
        if len(group_ids) != len(set(group_ids)):
            raise ValueError("contact_groups[].group_id must be unique")
        service_ids = [s.service_id for s in self.services]
        if len(service_ids) != len(set(service_ids)):
            raise ValueError("services[].service_id must be unique")
        known = set(group_ids)
        for svc in self.services:
            missing = [g for g in svc.contact_groups if g not in known]
            if missing:
                raise ValueError(f"service {svc.service_id} references unknown contact group(s) {missing}")
        return self

    def service_models(self) -> list[Service]:
        return [s.to_model(self.monitoring.defaults) for s in self.services]

    def contact_group_models(self) -> list[ContactGroup]:
        return [g.to_model() for g in self.contact_groups]


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    log_level = os.getenv("JANUSCOPE_LOG_LEVEL")
    if log_level:
        data["log_level"] = log_level

    notifications = data.setdefault("notifications", {}) or {}
    data["notifications"] = notifications

    bot_token = os.getenv("TELEGRAM_BOT_TOKEN")
    if bot_token:
        telegram = notifications.setdefault("telegram", {}) or {}
        telegram["bot_token"] = bot_token
        notifications["telegram"] = telegram

    smtp_password = os.getenv("SMTP_PASSWORD")
    if smtp_password:
        email = notifications.setdefault("email", {}) or {}
        smtp = email.setdefault("smtp", {}) or {}
        smtp["password"] = smtp_password
        email["smtp"] = smtp
        notifications["email"] = email
    return data


def load_config(config_path: str | Path | None = None) -> JanuscopeConfig:
    """Load configuration from a YAML file, then apply environment overrides.

    A missing file at the default location yields the built-in defaults; a
    missing file that was asked for explicitly is an error.
    """
    explicit = config_path is not None
    if config_path is None:
        config_path = os.getenv("JANUSCOPE_CONFIG", "config/januscope.yaml")
    path = Path(config_path)

    data: dict[str, Any] = {}
    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Cannot read config {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError("Config YAML must be a mapping")
        data = raw
    elif explicit:
        raise ConfigError(f"Config file not found: {path}")

    data = _apply_env_overrides(data)
    try:
        return JanuscopeConfig(**data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config {path}: {exc}") from exc
