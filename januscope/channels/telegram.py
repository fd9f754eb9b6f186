from __future__ import annotations

import httpx
import structlog

from januscope.channels.base import Channel
from januscope.models import AlertRequest, AlertResult


logger = structlog.get_logger(__name__)

TELEGRAM_MAX_MESSAGE_LEN = 3900


def split_telegram_message(text: str, *, max_len: int = TELEGRAM_MAX_MESSAGE_LEN) -> list[str]:
    s = (text or "").strip()
    if not s:
        return [""]

    max_len = max(1, int(max_len))
    parts: list[str] = []
    while s:
        if len(s) <= max_len:
            parts.append(s)
            break
        cut = s.rfind("\n", 0, max_len + 1)
        if cut < max_len * 0.6:
            cut = max_len
        chunk = s[:cut].rstrip()
        parts.append(chunk)
        s = s[cut:].lstrip()
    return parts


def _chat_ids(recipient: str) -> list[str]:
    return [part.strip() for part in str(recipient or "").split(",") if part.strip()]


class TelegramChannel(Channel):
    """Telegram Bot API channel.

    Every chat is attempted; a send succeeds only if every sendMessage call returns HTTP 200.
    """

    name = "telegram"

    def __init__(
        self,
        *,
        bot_token: str,
        enabled: bool = True,
        api_url: str = "https://api.telegram.org",
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 15.0,
    ):
        self.bot_token = bot_token
        self._enabled = bool(enabled) and bool(bot_token)
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = float(timeout_seconds)
        self._client = client
        self._owns_client = client is None
        if enabled and not bot_token:
            logger.warning("Telegram channel enabled without a bot token; disabling")
        elif self._enabled:
            logger.info("Telegram channel initialized", api_url=self.api_url)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _url(self, method: str) -> str:
        return f"{self.api_url}/bot{self.bot_token}/{method}"

    def _redact(self, msg: str) -> str:
        if self.bot_token:
            return msg.replace(self.bot_token, "<redacted>")
        return msg

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send(self, request: AlertRequest) -> AlertResult:
        if not self._enabled:
            return AlertResult.failed(self.name, "Channel is disabled")

        chat_ids = _chat_ids(request.recipient_for(self.name))
        if not chat_ids:
            return AlertResult.failed(self.name, "No Telegram chat id for recipient")

        text = self.format_message(request)
        client = self._get_client()
        delivered: list[str] = []
        failed: dict[str, str] = {}
        for chat_id in chat_ids:
            err = await self._send_chat(client, chat_id, text)
            if err is None:
                delivered.append(chat_id)
            else:
                failed[chat_id] = err

        if failed:
            logger.error(
                "Telegram message not delivered to every chat",
                delivered=delivered,
                failed=sorted(failed),
                event_type=request.event_type,
            )
            if len(chat_ids) == 1:
                return AlertResult.failed(self.name, failed[chat_ids[0]])
            return AlertResult.failed(self.name, "; ".join(f"chat {cid}: {err}" for cid, err in failed.items()))

        logger.info("Telegram message sent", chats=len(chat_ids), event_type=request.event_type)
        return AlertResult.ok(self.name)

    async def _send_chat(self, client: httpx.AsyncClient, chat_id: str, text: str) -> str | None:
        """Post every chunk to one chat; returns the first error, or None once all chunks went out."""
        for part in split_telegram_message(text):
            try:
                resp = await client.post(
                    self._url("sendMessage"),
                    data={"chat_id": chat_id, "text": part},
                    timeout=self.timeout_seconds,
                )
            except Exception as exc:
                err = self._redact(f"{type(exc).__name__}: {exc}")
                logger.error("Failed to send Telegram message", chat_id=chat_id, error=err)
                return err
            if resp.status_code != 200:
                err = f"HTTP {resp.status_code}"
                logger.error("Failed to send Telegram message", chat_id=chat_id, error=err)
                return err
        return None

    async def test_connection(self) -> bool:
        if not self._enabled:
            return False
        try:
            resp = await self._get_client().get(self._url("getMe"), timeout=5.0)
        except Exception as exc:
            logger.error("Telegram connection test failed", error=self._redact(f"{type(exc).__name__}: {exc}"))
            return False
        ok = resp.status_code == 200
        if not ok:
            logger.error("Telegram connection test failed", error=f"HTTP {resp.status_code}")
        return ok
