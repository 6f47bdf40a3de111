from __future__ import annotations

from domainpilot.core.config import get_settings
from domainpilot.core.errors import ConfigurationError
from domainpilot.providers.notify.base import Notifier
from domainpilot.providers.notify.fake import FakeNotifier
from domainpilot.providers.notify.log_notifier import LogNotifier
from domainpilot.providers.notify.webhook import WebhookNotifier


def get_notifier() -> Notifier:
    settings = get_settings()
    provider = (settings.notifier_provider or "log").lower()

    if provider == "log":
        return LogNotifier()
    if provider == "fake":
        return FakeNotifier()
    if provider == "webhook":
        return WebhookNotifier()

    raise ConfigurationError(f"Unsupported notifier provider: {provider}")
