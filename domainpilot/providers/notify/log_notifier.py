from __future__ import annotations

import logging

from domainpilot.providers.notify.base import DomainNotification


logger = logging.getLogger(__name__)


class LogNotifier:
    async def send(self, notification: DomainNotification) -> None:
        # Default sink for deployments that deliver email from log pipelines.
        logger.info(
            "domain_notification event_type=%s tenant_id=%s hostname=%s session_id=%s",
            notification.event_type,
            notification.tenant_id,
            notification.hostname,
            notification.session_id,
        )
