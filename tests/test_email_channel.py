from __future__ import annotations

import smtplib

import pytest

from januscope.channels import build_channels
from januscope.channels import mail
from januscope.channels.mail import EmailChannel
from januscope.config import NotificationSettings, SmtpSettings
from januscope.models import AlertRequest


class _FakeSMTP:
    instances: list["_FakeSMTP"] = []

    def __init__(self, host: str, port: int, timeout: float = 0, **kwargs) -> None:
        self.host = host
        self.port = port
        self.started_tls = False
        self.logged_in: tuple[str, str] | None = None
        self.messages: list[tuple[str, list[str], str]] = []
        self.closed = False
        type(self).instances.append(self)

    def starttls(self, context=None) -> None:
        self.started_tls = True

    def login(self, user: str, password: str) -> None:
        self.logged_in = (user, password)

    def sendmail(self, from_addr: str, to_addrs: list[str], msg: str) -> None:
        self.messages.append((from_addr, to_addrs, msg))

    def quit(self) -> None:
        return None

    def __enter__(self) -> "_FakeSMTP":
        return self

    def __exit__(self, *exc) -> None:
        self.closed = True


class _RefusingSMTP(_FakeSMTP):
    def sendmail(self, from_addr: str, to_addrs: list[str], msg: str) -> None:
        raise smtplib.SMTPRecipientsRefused({to_addrs[0]: (550, b"no such user")})


class _BadLoginSMTP(_FakeSMTP):
    def login(self, user: str, password: str) -> None:
        raise smtplib.SMTPAuthenticationError(535, b"bad credentials")


def _settings(**kw) -> SmtpSettings:
    kw.setdefault("host", "smtp.example.com")
    kw.setdefault("from_address", "alerts@example.com")
    kw.setdefault("username", "alerts")
    kw.setdefault("password", "pw")
    return SmtpSettings(**kw)


def _request() -> AlertRequest:
    return AlertRequest(
        recipient="ops",
        subject="web is DOWN",
        body="Error: HTTP 502",
        channel_recipients={"email": "ops@example.com, oncall@example.com"},
    )


@pytest.fixture(autouse=True)
def _reset_instances() -> None:
    _FakeSMTP.instances = []


@pytest.mark.asyncio
async def test_send_uses_starttls_and_all_addresses(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(mail.smtplib, "SMTP", _FakeSMTP)
    channel = EmailChannel(_settings())

    result = await channel.send(_request())

    assert result.success is True
    (server,) = _FakeSMTP.instances
    assert server.started_tls is True
    assert server.logged_in == ("alerts", "pw")
    from_addr, to, msg = server.messages[0]
    assert from_addr == "alerts@example.com"
    assert to == ["ops@example.com", "oncall@example.com"]
    assert "Subject: web is DOWN" in msg


@pytest.mark.asyncio
async def test_smtp_error_becomes_failed_result(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(mail.smtplib, "SMTP", _RefusingSMTP)
    result = await EmailChannel(_settings()).send(_request())
    assert result.success is False
    assert result.error_message.startswith("SMTPRecipientsRefused")


@pytest.mark.asyncio
async def test_no_address_fails_without_connecting(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(mail.smtplib, "SMTP", _FakeSMTP)
    result = await EmailChannel(_settings()).send(AlertRequest(recipient="", subject="x", body="y"))
    assert result.success is False
    assert _FakeSMTP.instances == []


def test_channel_without_host_is_disabled() -> None:
    assert EmailChannel(_settings(host="")).enabled is False


def test_build_channels_follows_settings() -> None:
    settings = NotificationSettings(
        telegram={"enabled": True, "bot_token": "tok"},
        email={"enabled": True, "smtp": {"host": "smtp.example.com", "from_address": "a@example.com"}},
    )
    names = [c.name for c in build_channels(settings)]
    assert names == ["console", "telegram", "email"]
    assert [c.name for c in build_channels(NotificationSettings())] == ["console"]


@pytest.mark.asyncio
async def test_connection_closed_when_login_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(mail.smtplib, "SMTP", _BadLoginSMTP)
    channel = EmailChannel(_settings())

    result = await channel.send(_request())
    connected = await channel.test_connection()

    assert result.success is False
    assert result.error_message.startswith("SMTPAuthenticationError")
    assert connected is False
    assert len(_BadLoginSMTP.instances) == 2
    assert all(server.started_tls and server.closed for server in _BadLoginSMTP.instances)


@pytest.mark.asyncio
async def test_successful_send_and_test_close_connection(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(mail.smtplib, "SMTP", _FakeSMTP)
    channel = EmailChannel(_settings())
    assert (await channel.send(_request())).success is True
    assert await channel.test_connection() is True
    assert [server.closed for server in _FakeSMTP.instances] == [True, True]
