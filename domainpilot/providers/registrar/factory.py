from __future__ import annotations

from domainpilot.core.config import get_settings
from domainpilot.core.errors import ConfigurationError
from domainpilot.providers.registrar.base import DomainRecord, RegistrarClient, RegistrarVerification
from domainpilot.providers.registrar.fake import FakeRegistrarClient
from domainpilot.providers.registrar.render import RenderRegistrarClient


class NoRegistrarClient:
    # Registrars without an API never know the domain; verification relies on DNS + health.
    async def find_domain_by_name(self, name: str) -> DomainRecord | None:
        return None

    async def verify_domain(self, domain_id: str) -> RegistrarVerification:
        return RegistrarVerification(verified=False)

    async def add_domain(self, name: str) -> DomainRecord:
        return DomainRecord(id="", name=name)

    async def remove_domain(self, domain_id: str) -> None:
        return None


def get_registrar_client() -> RegistrarClient:
    settings = get_settings()
    provider = (settings.registrar_provider or "none").lower()

    if provider == "none":
        return NoRegistrarClient()
    if provider == "fake":
        return FakeRegistrarClient()
    if provider == "render":
        return RenderRegistrarClient()

    raise ConfigurationError(f"Unsupported registrar provider: {provider}")
