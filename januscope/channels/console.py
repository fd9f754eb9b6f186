from __future__ import annotations

from collections import deque

import structlog

from januscope.channels.base import Channel
from januscope.models import AlertRequest, AlertResult


logger = structlog.get_logger(__name__)


class ConsoleChannel(Channel):
    """Writes alerts to the log. Always on; used as the reference channel and in tests."""

    name = "console"

    def __init__(self) -> None:
        # Most recent requests, for inspection in tests and demos.
        self.sent: deque[AlertRequest] = deque(maxlen=100)

    async def send(self, request: AlertRequest) -> AlertResult:
        self.sent.append(request)
        logger.info(
            "NOTIFICATION (console)",
            to=request.recipient_for(self.name),
            subject=request.subject,
            event_type=request.event_type,
            service_id=request.service_id,
            message=request.body,
        )
        return AlertResult.ok(self.name)

    async def test_connection(self) -> bool:
        return True
