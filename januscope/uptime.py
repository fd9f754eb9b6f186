from __future__ import annotations

import asyncio
import time

import httpx
import structlog

from januscope.models import Service, UptimeCheckResult


logger = structlog.get_logger(__name__)

DEFAULT_USER_AGENT = "Januscope/1.0.0"


def classify_status_code(status_code: int) -> bool:
    """2xx and 3xx count as UP."""
    return 200 <= int(status_code) < 400


class AvailabilityProber:
    """Performs HTTP(S) uptime checks with bounded retries."""

    def __init__(self, client: httpx.AsyncClient, *, user_agent: str = DEFAULT_USER_AGENT):
        self.client = client
        self.user_agent = user_agent

    async def probe(self, service: Service) -> UptimeCheckResult:
        max_attempts = max(1, int(service.max_retries))
        retry_delay = max(0.0, float(service.retry_delay_ms) / 1000.0)

        result = await self._attempt(service)
        attempt = 1
        while not result.is_up and attempt < max_attempts:
            logger.warning(
                "Service check failed, retrying",
                service=service.name,
                error=result.error_message,
                attempt=attempt,
                max_attempts=max_attempts,
            )
            await asyncio.sleep(retry_delay)
            result = await self._attempt(service)
            attempt += 1

        if result.is_up:
            logger.info(
                "Service UP",
                service=service.name,
                response_time_ms=result.response_time_ms,
                http_code=result.http_code,
            )
            return result

        logger.error(
            "Service DOWN (all retries exhausted)",
            service=service.name,
            error=result.error_message,
            http_code=result.http_code,
        )
        return result

    async def _attempt(self, service: Service) -> UptimeCheckResult:
        headers = dict(service.custom_headers or {})
        headers["User-Agent"] = self.user_agent
        timeout = max(0.001, float(service.timeout_ms) / 1000.0)

        started = time.perf_counter()
        try:
            # Streaming skips the body; leaving the block releases the connection.
            async with self.client.stream(
                "GET",
                service.url,
                headers=headers,
                follow_redirects=True,
                timeout=timeout,
            ) as resp:
                status_code = resp.status_code
        except Exception as exc:
            elapsed_ms = int((time.perf_counter() - started) * 1000.0)
            return UptimeCheckResult.failure(
                service.service_id,
                f"{type(exc).__name__}: {exc}",
                response_time_ms=elapsed_ms,
            )

        elapsed_ms = int((time.perf_counter() - started) * 1000.0)
        if classify_status_code(status_code):
            return UptimeCheckResult.success(service.service_id, elapsed_ms, status_code)
        return UptimeCheckResult.failure(
            service.service_id,
            f"HTTP {status_code}",
            http_code=status_code,
            response_time_ms=elapsed_ms,
        )
