"""Notification engine: channel registry, cooldown gate, rendering and async send."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable, Iterable

import structlog

from januscope.channels.base import Channel
from januscope.config import NotificationSettings
from januscope.errors import EngineError
from januscope.lifecycle import Lifecycle
from januscope.models import AlertRequest, AlertResult, CooldownKey, NotificationCooldown, utc_now
from januscope.pool import PoolStats, WorkerPool
from januscope.store import MonitorStore
from januscope.templates import render


logger = structlog.get_logger(__name__)

CHANNEL_NOT_FOUND = "Channel not found"
CHANNEL_DISABLED = "Channel is disabled"
IN_COOLDOWN = "In cooldown period"


class AlertDispatcher:
    name = "notification"

    def __init__(
        self,
        settings: NotificationSettings,
        store: MonitorStore,
        channels: Iterable[Channel] = (),
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings
        self.store = store
        self.clock = clock
        self.lifecycle = Lifecycle(self.name)
        self._channels: dict[str, Channel] = {}
        self._key_locks: dict[CooldownKey, asyncio.Lock] = {}
        self._key_users: dict[CooldownKey, int] = {}
        self._pool = WorkerPool("notification", settings.pool_size)
        for channel in channels:
            self.register(channel)

    # --- registry ---------------------------------------------------------

    def register(self, channel: Channel) -> None:
        key = channel.name.lower()
        if key in self._channels:
            logger.warning("Replacing registered channel", channel=key)
        self._channels[key] = channel

    def get_channel(self, name: str) -> Channel | None:
        return self._channels.get(str(name or "").lower())

    def available_channels(self) -> list[str]:
        return list(self._channels.keys())

    def enabled_channels(self) -> list[str]:
        return [name for name, ch in self._channels.items() if ch.enabled]

    # --- lifecycle --------------------------------------------------------

    def initialize(self) -> None:
        logger.info(
            "Notification engine initialized",
            channels=self.available_channels(),
            cooldown_seconds=self.settings.cooldown_seconds,
        )
        self.lifecycle.mark_initialized()

    async def start(self) -> None:
        try:
            self._pool.open()
        except Exception as exc:
            self.lifecycle.mark_failed(exc)
            raise EngineError(f"Notification engine failed to start: {exc}") from exc
        results = await self.test_channels()
        for name, connected in results.items():
            logger.info("Channel connectivity test", channel=name, result="SUCCESS" if connected else "FAILED")
        self.lifecycle.mark_running()
        logger.info("Notification engine started")

    async def stop(self) -> None:
        await self._pool.shutdown(self.settings.shutdown_timeout_seconds)
        await self.aclose_channels()
        self.lifecycle.mark_stopped()
        logger.info("Notification engine stopped")

    async def aclose_channels(self) -> None:
        for channel in self._channels.values():
            aclose = getattr(channel, "aclose", None)
            if aclose is not None:
                await aclose()

    def is_healthy(self) -> bool:
        return bool(self._channels) and self.lifecycle.is_running and self._pool.is_open

    def stats(self) -> PoolStats:
        return self._pool.stats()

    def get_stats(self) -> str:
        return (
            f"Notification Stats - Channels: {len(self._channels)}, "
            f"Enabled: {len(self.enabled_channels())}, Cooldown keys: {self.store.cooldown_count()}"
        )

    async def test_channels(self) -> dict[str, bool]:
        out: dict[str, bool] = {}
        for name, channel in self._channels.items():
            if not channel.enabled:
                continue
            try:
                out[name] = bool(await channel.test_connection())
            except Exception as exc:
                logger.error("Channel test crashed", channel=name, error=f"{type(exc).__name__}: {exc}")
                out[name] = False
        return out

    # --- cooldown ---------------------------------------------------------

    @asynccontextmanager
    async def _key_gate(self, key: CooldownKey) -> AsyncIterator[None]:
        # A key's lock lives only while some send holds or awaits it.
        lock = self._key_locks.setdefault(key, asyncio.Lock())
        self._key_users[key] = self._key_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._key_users[key] - 1
            if remaining:
                self._key_users[key] = remaining
            else:
                del self._key_users[key]
                del self._key_locks[key]

    def pending_cooldown_keys(self) -> int:
        return len(self._key_locks)

    def _in_cooldown(self, key: CooldownKey | None) -> bool:
        if key is None:
            return False
        row = self.store.get_cooldown(key)
        return row is not None and row.is_active(self.clock())

    def _record_cooldown(self, request: AlertRequest) -> None:
        key = request.cooldown_key
        if key is None:
            return
        now = self.clock()
        period = timedelta(seconds=self.settings.cooldown_for(request.event_type))
        self.store.save_cooldown(
            NotificationCooldown(
                service_id=request.service_id,
                group_id=request.group_id,
                event_type=str(request.event_type),
                last_notified_at=now,
                cooldown_until=now + period,
            )
        )

    # --- sending ----------------------------------------------------------

    @staticmethod
    def _rendered(request: AlertRequest) -> AlertRequest:
        return replace(
            request,
            subject=render(request.subject, request.variables),
            body=render(request.body, request.variables) or "",
        )

    async def _deliver(self, channel: Channel, request: AlertRequest) -> AlertResult:
        try:
            return await channel.send(request)
        except Exception as exc:
            err = f"{type(exc).__name__}: {exc}"
            logger.error("Channel send crashed", channel=channel.name, error=err)
            return AlertResult.failed(channel.name, err)

    async def send(self, channel_name: str, request: AlertRequest) -> AlertResult:
        channel = self.get_channel(channel_name)
        if channel is None:
            logger.error("Channel not found", channel=channel_name)
            return AlertResult.failed(channel_name, CHANNEL_NOT_FOUND)
        if not channel.enabled:
            logger.warning("Channel is disabled", channel=channel_name)
            return AlertResult.failed(channel.name, CHANNEL_DISABLED)

        key = request.cooldown_key
        if key is None:
            return await self._deliver(channel, self._rendered(request))

        async with self._key_gate(key):
            if self._in_cooldown(key):
                logger.debug("Notification in cooldown period, skipping", key=key, channel=channel.name)
                return AlertResult.failed(channel.name, IN_COOLDOWN)
            result = await self._deliver(channel, self._rendered(request))
            if result.success:
                self._record_cooldown(request)
            return result

    async def send_to_all(self, request: AlertRequest, channels: Iterable[str] | None = None) -> list[AlertResult]:
        """Broadcast one alert. The cooldown is checked once for the whole broadcast
        and recorded only when every targeted channel delivered it, so a failed
        channel gets the next occurrence of the event."""
        if channels is None:
            targets = [ch for ch in self._channels.values() if ch.enabled]
            results: list[AlertResult] = []
        else:
            targets = []
            results = []
            for name in channels:
                ch = self.get_channel(name)
                if ch is None:
                    results.append(AlertResult.failed(name, CHANNEL_NOT_FOUND))
                elif not ch.enabled:
                    results.append(AlertResult.failed(ch.name, CHANNEL_DISABLED))
                else:
                    targets.append(ch)
        if not targets:
            return results

        rendered = self._rendered(request)
        key = request.cooldown_key
        if key is None:
            results.extend([await self._deliver(ch, rendered) for ch in targets])
            return results

        async with self._key_gate(key):
            if self._in_cooldown(key):
                logger.debug("Broadcast in cooldown period, skipping", key=key)
                results.extend(AlertResult.failed(ch.name, IN_COOLDOWN) for ch in targets)
                return results
            delivered = [await self._deliver(ch, rendered) for ch in targets]
            if all(r.success for r in delivered):
                self._record_cooldown(request)
            results.extend(delivered)
        return results

    def send_async(self, channel_name: str, request: AlertRequest) -> asyncio.Task[AlertResult]:
        return self._pool.submit(
            lambda: self.send(channel_name, request),
            on_error=lambda exc: AlertResult.failed(channel_name, f"{type(exc).__name__}: {exc}"),
            label=f"send-{channel_name}",
        )

    def send_to_all_async(
        self, request: AlertRequest, channels: Iterable[str] | None = None
    ) -> asyncio.Task[list[AlertResult]]:
        names = list(channels) if channels is not None else None
        return self._pool.submit(
            lambda: self.send_to_all(request, names),
            on_error=lambda exc: [AlertResult.failed("broadcast", f"{type(exc).__name__}: {exc}")],
            label="broadcast",
        )
