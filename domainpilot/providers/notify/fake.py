from __future__ import annotations

from domainpilot.providers.notify.base import DomainNotification


class FakeNotifier:
    def __init__(self) -> None:
        self.sent: list[DomainNotification] = []

    async def send(self, notification: DomainNotification) -> None:
        self.sent.append(notification)

    def events(self, event_type: str | None = None, *, tenant_id: str | None = None) -> list[DomainNotification]:
        return [
            item
            for item in self.sent
            if (event_type is None or item.event_type == event_type)
            and (tenant_id is None or item.tenant_id == tenant_id)
        ]
