from __future__ import annotations

from pathlib import Path

import pytest

from januscope.config import JanuscopeConfig, NotificationSettings, load_config
from januscope.errors import ConfigError
from januscope.models import ServiceStatus


CONFIG_YAML = """
log_level: DEBUG
monitoring:
  pool_size: 8
  defaults:
    timeout_ms: 5000
    max_retries: 2
certificates:
  expiry_thresholds_days: "7,30,14"
notifications:
  cooldown_seconds: 120
  alert_channels: [Console, telegram]
  telegram:
    enabled: true
contact_groups:
  - group_id: 1
    name: ops
    email_addresses: [ops@example.com]
    telegram_chat_ids: [-100123]
services:
  - service_id: 1
    name: web
    url: https://web.example.com
    contact_groups: [1]
  - service_id: 2
    name: api
    url: http://api.internal/health
    timeout_ms: 2000
    max_retries: 0
"""


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("JANUSCOPE_CONFIG", "JANUSCOPE_LOG_LEVEL", "TELEGRAM_BOT_TOKEN", "SMTP_PASSWORD"):
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "januscope.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_config_from_yaml(tmp_path: Path) -> None:
    cfg = load_config(_write(tmp_path, CONFIG_YAML))

    assert cfg.log_level == "DEBUG"
    assert cfg.monitoring.pool_size == 8
    assert cfg.certificates.expiry_thresholds_days == [30, 14, 7]
    assert cfg.notifications.alert_channels == ["console", "telegram"]

    web, api = cfg.service_models()
    assert web.timeout_ms == 5000
    assert web.max_retries == 2
    assert web.retry_delay_ms == 5000
    assert web.current_status is ServiceStatus.UNKNOWN
    assert web.contact_group_ids == [1]
    assert api.timeout_ms == 2000
    assert api.max_retries == 0

    (group,) = cfg.contact_group_models()
    assert group.telegram_chat_ids == ["-100123"]


def test_env_overrides_secrets(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "tok")
    monkeypatch.setenv("SMTP_PASSWORD", "pw")
    monkeypatch.setenv("JANUSCOPE_LOG_LEVEL", "WARNING")
    cfg = load_config(_write(tmp_path, CONFIG_YAML))
    assert cfg.notifications.telegram.bot_token == "tok"
    assert cfg.notifications.email.smtp.password == "pw"
    assert cfg.log_level == "WARNING"


def test_config_path_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("JANUSCOPE_CONFIG", str(_write(tmp_path, CONFIG_YAML)))
    assert load_config().monitoring.pool_size == 8


def test_missing_default_config_uses_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    cfg = load_config()
    assert cfg.services == []
    assert cfg.notifications.alert_channels == ["console"]
    assert cfg.certificates.expiry_thresholds_days == [30, 14, 7, 3]


def test_missing_explicit_config_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "nope.yaml")


@pytest.mark.parametrize(
    "text",
    [
        "notifications:\n  alert_channels: [pager]\n",
        "certificates:\n  expiry_thresholds_days: [30, -1]\n",
        "services:\n  - {service_id: 1, name: a, url: 'https://a', contact_groups: [9]}\n",
        "services:\n  - {service_id: 1, name: a, url: 'https://a'}\n  - {service_id: 1, name: b, url: 'https://b'}\n",
        "- just\n- a list\n",
        "monitoring: [unbalanced\n",
    ],
)
def test_invalid_config_raises_config_error(tmp_path: Path, text: str) -> None:
    with pytest.raises(ConfigError):
        load_config(_write(tmp_path, text))


def test_cooldown_for_event_override() -> None:
    settings = NotificationSettings(cooldown_seconds=300, event_cooldown_seconds={"SSL_EXPIRY_7": 3600})
    assert settings.cooldown_for("SSL_EXPIRY_7") == 3600
    assert settings.cooldown_for("SERVICE_DOWN") == 300
    assert settings.cooldown_for(None) == 300


def test_defaults_match_documented_values() -> None:
    cfg = JanuscopeConfig()
    assert cfg.monitoring.pool_size == 50
    assert cfg.monitoring.defaults.timeout_ms == 10_000
    assert cfg.monitoring.defaults.max_retries == 3
    assert cfg.monitoring.defaults.retry_delay_ms == 5_000
    assert cfg.notifications.cooldown_seconds == 300
    assert cfg.monitoring.user_agent == "Januscope/1.0.0"
