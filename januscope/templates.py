"""``{{variable}}`` templates for alert subjects and bodies."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping

from januscope.models import SERVICE_DOWN, SERVICE_RECOVERED


_VARIABLE_RE = re.compile(r"\{\{([^}]+)\}\}")


@dataclass(frozen=True)
class AlertTemplate:
    subject: str | None
    body: str


SERVICE_DOWN_TEMPLATE = AlertTemplate(
    subject="ALERT: {{service_name}} is DOWN",
    body=(
        "⚠️ ALERT: Service Down\n\n"
        "Service: {{service_name}}\n"
        "URL: {{service_url}}\n"
        "Status: DOWN\n"
        "Time: {{down_time}}\n"
        "Error: {{error_message}}\n"
        "HTTP Code: {{http_code}}\n\n"
        "Please investigate immediately."
    ),
)

SERVICE_RECOVERED_TEMPLATE = AlertTemplate(
    subject="RESOLVED: {{service_name}} is UP",
    body=(
        "✅ RESOLVED: Service Recovered\n\n"
        "Service: {{service_name}}\n"
        "URL: {{service_url}}\n"
        "Status: UP\n"
        "Downtime: {{downtime_duration}}\n"
        "Recovered: {{recovered_time}}\n\n"
        "Service is back online."
    ),
)

SSL_EXPIRY_TEMPLATE = AlertTemplate(
    subject="WARNING: SSL certificate for {{service_name}} expires in {{days_remaining}} days",
    body=(
        "⚠️ WARNING: SSL Certificate Expiring Soon\n\n"
        "Service: {{service_name}}\n"
        "Domain: {{domain}}\n"
        "Days Remaining: {{days_remaining}}\n"
        "Threshold: {{threshold_days}} days\n"
        "Expires: {{expiry_date}}\n"
        "Issuer: {{issuer}}\n\n"
        "Please renew the certificate."
    ),
)


def render(template: str | None, variables: Mapping[str, Any] | None) -> str | None:
    """Substitute ``{{name}}`` placeholders.

    Placeholders without a value are left exactly as written, so a missing
    variable shows up in the delivered message instead of vanishing.
    """
    if not template or not variables:
        return template

    def _sub(match: re.Match[str]) -> str:
        name = match.group(1).strip()
        if name not in variables or variables[name] is None:
            return match.group(0)
        return str(variables[name])

    return _VARIABLE_RE.sub(_sub, template)


def default_template(event_type: str) -> AlertTemplate:
    if event_type == SERVICE_DOWN:
        return SERVICE_DOWN_TEMPLATE
    if event_type == SERVICE_RECOVERED:
        return SERVICE_RECOVERED_TEMPLATE
    if event_type.startswith("SSL_EXPIRY_"):
        return SSL_EXPIRY_TEMPLATE
    return AlertTemplate(subject="{{service_name}}: " + event_type, body=event_type)


def format_duration(seconds: int | None) -> str:
    if seconds is None:
        return "n/a"
    seconds = max(0, int(seconds))
    days, rem = divmod(seconds, 86_400)
    hours, rem = divmod(rem, 3_600)
    minutes, secs = divmod(rem, 60)
    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
