from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol


EVENT_SETUP_INSTRUCTIONS = "setup_instructions"
EVENT_ACTIVATION_SUCCESS = "activation_success"
EVENT_TIMEOUT_HELP = "timeout_help"

DOMAIN_EVENTS = frozenset({EVENT_SETUP_INSTRUCTIONS, EVENT_ACTIVATION_SUCCESS, EVENT_TIMEOUT_HELP})


@dataclass(frozen=True)
class DomainNotification:
    event_type: str
    tenant_id: str
    hostname: str
    session_id: str
    occurred_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "tenant_id": self.tenant_id,
            "hostname": self.hostname,
            "session_id": self.session_id,
            "occurred_at": self.occurred_at.isoformat(),
            "payload": self.payload,
        }


class Notifier(Protocol):
    """Delivery collaborator (email, webhook, ...); the core only decides when to call it."""

    async def send(self, notification: DomainNotification) -> None:
        ...
