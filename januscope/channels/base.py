from __future__ import annotations

from abc import ABC, abstractmethod

from januscope.models import AlertRequest, AlertResult


class Channel(ABC):
    """One alert delivery mechanism.

    Implementations only translate an already rendered request into a
    transport call. They report failures as ``AlertResult`` values and do not
    hold any alerting policy (cooldowns, templating, retries).
    """

    name: str = ""

    @property
    def enabled(self) -> bool:
        return True

    @abstractmethod
    async def send(self, request: AlertRequest) -> AlertResult: ...

    @abstractmethod
    async def test_connection(self) -> bool: ...

    def format_message(self, request: AlertRequest) -> str:
        if request.subject:
            return f"{request.subject}\n\n{request.body}".strip()
        return (request.body or "").strip()
