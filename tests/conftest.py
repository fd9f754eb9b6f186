from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from januscope.models import ContactGroup, Service
from januscope.store import InMemoryStore


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ops_group() -> ContactGroup:
    return ContactGroup(
        group_id=10,
        name="ops",
        email_addresses=["ops@example.com", "oncall@example.com"],
        telegram_chat_ids=["-1001", "-1002"],
    )


@pytest.fixture
def web_service() -> Service:
    return Service(
        service_id=1,
        name="web",
        url="https://web.example.com/health",
        max_retries=1,
        retry_delay_ms=0,
        contact_group_ids=[10],
    )


@pytest.fixture
def store(web_service: Service, ops_group: ContactGroup) -> InMemoryStore:
    return InMemoryStore([web_service], [ops_group])
