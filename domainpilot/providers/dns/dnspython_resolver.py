from __future__ import annotations

import time

import dns.asyncresolver
import dns.exception
import dns.resolver

from domainpilot.core.config import get_settings, split_csv
from domainpilot.core.errors import DnsLookupError
from domainpilot.services.telemetry import record_external_call


class DnspythonResolver:
    def __init__(
        self,
        nameservers: list[str] | None = None,
        *,
        timeout_s: float | None = None,
        lifetime_s: float | None = None,
    ) -> None:
        settings = get_settings()
        servers = nameservers if nameservers is not None else split_csv(settings.dns_nameservers)
        # Explicit servers skip /etc/resolv.conf entirely.
        self._resolver = dns.asyncresolver.Resolver(configure=not servers)
        if servers:
            self._resolver.nameservers = servers
        self._resolver.timeout = timeout_s if timeout_s is not None else settings.dns_timeout_s
        self._resolver.lifetime = lifetime_s if lifetime_s is not None else settings.dns_lifetime_s

    async def _resolve(self, name: str, rdtype: str):
        start = time.monotonic()
        try:
            answer = await self._resolver.resolve(name, rdtype)
        except (dns.resolver.NoAnswer, dns.resolver.NoNameservers) as exc:
            record_external_call(integration="dns", latency_ms=(time.monotonic() - start) * 1000.0, success=True)
            if isinstance(exc, dns.resolver.NoNameservers):
                raise DnsLookupError("servfail", str(exc)) from exc
            return None
        except dns.resolver.NXDOMAIN as exc:
            record_external_call(integration="dns", latency_ms=(time.monotonic() - start) * 1000.0, success=True)
            raise DnsLookupError("nxdomain", f"{name} does not exist") from exc
        except dns.exception.Timeout as exc:
            record_external_call(integration="dns", latency_ms=(time.monotonic() - start) * 1000.0, success=False)
            raise DnsLookupError("timeout", f"DNS lookup timed out for {name}") from exc
        except dns.exception.DNSException as exc:
            record_external_call(integration="dns", latency_ms=(time.monotonic() - start) * 1000.0, success=False)
            raise DnsLookupError("malformed", str(exc) or exc.__class__.__name__) from exc
        record_external_call(integration="dns", latency_ms=(time.monotonic() - start) * 1000.0, success=True)
        return answer

    async def resolve_cname(self, name: str) -> str | None:
        answer = await self._resolve(name, "CNAME")
        if answer is None:
            return None
        for rdata in answer:
            return str(rdata.target).rstrip(".").lower()
        return None

    async def resolve_a(self, name: str) -> list[str]:
        answer = await self._resolve(name, "A")
        if answer is None:
            return []
        return [str(rdata.address) for rdata in answer]
