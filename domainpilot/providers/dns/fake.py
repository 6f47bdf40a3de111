from __future__ import annotations

from domainpilot.core.errors import DnsLookupError


class FakeDnsResolver:
    def __init__(
        self,
        *,
        cnames: dict[str, str] | None = None,
        a_records: dict[str, list[str]] | None = None,
        failures: dict[str, str] | None = None,
    ) -> None:
        # A fixed snapshot keeps checker output deterministic in tests; mutate between ticks to simulate propagation.
        self.cnames: dict[str, str] = dict(cnames or {})
        self.a_records: dict[str, list[str]] = dict(a_records or {})
        self.failures: dict[str, str] = dict(failures or {})
        self.queries: list[tuple[str, str]] = []

    def _maybe_fail(self, name: str) -> None:
        kind = self.failures.get(name)
        if kind:
            raise DnsLookupError(kind, f"{kind} for {name}")

    async def resolve_cname(self, name: str) -> str | None:
        self.queries.append(("CNAME", name))
        self._maybe_fail(name)
        return self.cnames.get(name)

    async def resolve_a(self, name: str) -> list[str]:
        self.queries.append(("A", name))
        self._maybe_fail(name)
        return list(self.a_records.get(name, []))
