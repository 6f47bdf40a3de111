from __future__ import annotations

from typing import Protocol


class DnsResolver(Protocol):
    """Record lookups used by the DNS checker.

    Implementations return ``None`` / ``[]`` when the name exists but has no
    record of the requested type, and raise ``DnsLookupError`` for NXDOMAIN,
    timeouts and malformed responses.
    """

    async def resolve_cname(self, name: str) -> str | None:
        ...

    async def resolve_a(self, name: str) -> list[str]:
        ...
