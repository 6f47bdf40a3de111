from __future__ import annotations

from domainpilot.core.config import get_settings, split_csv
from domainpilot.providers.dns.base import DnsResolver
from domainpilot.providers.dns.dnspython_resolver import DnspythonResolver


def get_dns_resolver() -> DnsResolver:
    return DnspythonResolver()


def get_public_resolvers() -> dict[str, DnsResolver]:
    # One resolver per public server so propagation can be reported per server.
    return {server: DnspythonResolver([server]) for server in split_csv(get_settings().dns_public_resolvers)}
