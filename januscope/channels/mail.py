from __future__ import annotations

import asyncio
import smtplib
import ssl
from contextlib import contextmanager
from email.mime.text import MIMEText
from typing import Iterator

import structlog

from januscope.channels.base import Channel
from januscope.config import SmtpSettings
from januscope.models import AlertRequest, AlertResult


logger = structlog.get_logger(__name__)


def _looks_like_html(body: str) -> bool:
    s = (body or "").strip()
    return s.startswith("<") or "<html" in s.lower()


def _addresses(recipient: str) -> list[str]:
    return [part.strip() for part in str(recipient or "").replace(";", ",").split(",") if part.strip()]


class EmailChannel(Channel):
    """SMTP channel. smtplib is blocking, so each send runs in a worker thread."""

    name = "email"

    def __init__(self, smtp: SmtpSettings, *, enabled: bool = True):
        self.smtp = smtp
        self._enabled = bool(enabled) and bool(smtp.host) and bool(smtp.from_address)
        if enabled and not self._enabled:
            logger.warning("Email channel enabled without SMTP host/from address; disabling")
        elif self._enabled:
            logger.info("Email channel initialized", host=smtp.host, port=smtp.port, tls=smtp.use_tls)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @contextmanager
    def _session(self) -> Iterator[smtplib.SMTP]:
        cfg = self.smtp
        if cfg.use_tls:
            server = smtplib.SMTP(cfg.host, cfg.port, timeout=cfg.timeout_seconds)
        else:
            server = smtplib.SMTP_SSL(
                cfg.host, cfg.port, timeout=cfg.timeout_seconds, context=ssl.create_default_context()
            )
        # Leaving the block closes the socket, also when starttls or login fails.
        with server:
            if cfg.use_tls:
                server.starttls(context=ssl.create_default_context())
            if cfg.username:
                server.login(cfg.username, cfg.password)
            yield server

    def _send_sync(self, to: list[str], subject: str, body: str) -> None:
        msg = MIMEText(body, "html" if _looks_like_html(body) else "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self.smtp.from_address
        msg["To"] = ", ".join(to)
        with self._session() as server:
            server.sendmail(self.smtp.from_address, to, msg.as_string())

    async def send(self, request: AlertRequest) -> AlertResult:
        if not self._enabled:
            return AlertResult.failed(self.name, "Channel is disabled")

        to = _addresses(request.recipient_for(self.name))
        if not to:
            return AlertResult.failed(self.name, "No email address for recipient")

        try:
            await asyncio.to_thread(self._send_sync, to, request.subject or "Januscope alert", request.body)
        except Exception as exc:
            err = f"{type(exc).__name__}: {exc}"
            logger.error("Failed to send email", to=to, error=err)
            return AlertResult.failed(self.name, err)

        logger.info("Email sent", to=to, event_type=request.event_type)
        return AlertResult.ok(self.name)

    def _test_sync(self) -> None:
        with self._session():
            pass

    async def test_connection(self) -> bool:
        if not self._enabled:
            return False
        try:
            await asyncio.to_thread(self._test_sync)
        except Exception as exc:
            logger.error("Email connection test failed", error=f"{type(exc).__name__}: {exc}")
            return False
        return True
