from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timezone
import logging
from typing import Any, Callable

from domainpilot.providers.notify.base import DOMAIN_EVENTS, DomainNotification, Notifier
from domainpilot.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionNotifier:
    """Delivers each domain event at most once per monitoring session."""

    def __init__(
        self,
        notifier: Notifier,
        *,
        now: Callable[[], datetime] | None = None,
        max_tracked: int = 10_000,
    ) -> None:
        self._notifier = notifier
        self._now = now or _utc_now
        self._max_tracked = max_tracked
        # Insertion ordered so the oldest claims are evicted first.
        self._delivered: OrderedDict[tuple[str, str], None] = OrderedDict()

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    def already_sent(self, session_id: str, event_type: str) -> bool:
        return (session_id, event_type) in self._delivered

    @property
    def tracked_count(self) -> int:
        return len(self._delivered)

    def forget_session(self, session_id: str) -> None:
        """Drop dedupe state for a session that can no longer emit events."""
        for key in [key for key in self._delivered if key[0] == session_id]:
            del self._delivered[key]

    async def notify(
        self,
        event_type: str,
        *,
        tenant_id: str,
        hostname: str,
        session_id: str,
        payload: dict[str, Any] | None = None,
    ) -> bool:
        if event_type not in DOMAIN_EVENTS:
            raise ValueError(f"unknown domain event: {event_type}")
        key = (session_id, event_type)
        # Claim before awaiting delivery so a concurrent caller sees the event as taken.
        if key in self._delivered:
            increment_counter("notifications_deduplicated")
            return False
        self._delivered[key] = None
        while len(self._delivered) > self._max_tracked:
            self._delivered.popitem(last=False)
        notification = DomainNotification(
            event_type=event_type,
            tenant_id=tenant_id,
            hostname=hostname,
            session_id=session_id,
            occurred_at=self._now(),
            payload=payload or {},
        )
        try:
            await self._notifier.send(notification)
        except Exception as exc:  # noqa: BLE001 - delivery failures never roll back a status change
            increment_counter("notifications_failed")
            logger.warning(
                "domain_notification_failed tenant_id=%s event=%s session_id=%s",
                tenant_id,
                event_type,
                session_id,
                exc_info=exc,
            )
            return False
        increment_counter("notifications_sent")
        return True
