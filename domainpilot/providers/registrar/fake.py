from __future__ import annotations

from domainpilot.core.errors import RegistrarError
from domainpilot.providers.registrar.base import DomainRecord, RegistrarVerification


class FakeRegistrarClient:
    def __init__(self) -> None:
        # Keep records in memory so tests can flip verification between ticks.
        self.records: dict[str, DomainRecord] = {}
        self.verifiable: set[str] = set()
        self.fail_with: str | None = None
        self.calls: list[tuple[str, str]] = []
        self._next_id = 1

    def _check_failure(self) -> None:
        if self.fail_with:
            raise RegistrarError(self.fail_with)

    def register(self, name: str, *, verified: bool = False) -> DomainRecord:
        record = DomainRecord(id=f"dom-{self._next_id}", name=name, verified=verified)
        self._next_id += 1
        self.records[name] = record
        if verified:
            self.verifiable.add(record.id)
        return record

    def mark_verified(self, name: str) -> None:
        record = self.records.get(name) or self.register(name)
        self.verifiable.add(record.id)

    async def find_domain_by_name(self, name: str) -> DomainRecord | None:
        self.calls.append(("find", name))
        self._check_failure()
        return self.records.get(name)

    async def verify_domain(self, domain_id: str) -> RegistrarVerification:
        self.calls.append(("verify", domain_id))
        self._check_failure()
        return RegistrarVerification(verified=domain_id in self.verifiable)

    async def add_domain(self, name: str) -> DomainRecord:
        self.calls.append(("add", name))
        self._check_failure()
        return self.records.get(name) or self.register(name)

    async def remove_domain(self, domain_id: str) -> None:
        self.calls.append(("remove", domain_id))
        self._check_failure()
        for name, record in list(self.records.items()):
            if record.id == domain_id:
                del self.records[name]
