from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class DomainRecord:
    id: str
    name: str
    verified: bool = False
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class RegistrarVerification:
    verified: bool
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


class RegistrarClient(Protocol):
    async def find_domain_by_name(self, name: str) -> DomainRecord | None:
        ...

    async def verify_domain(self, domain_id: str) -> RegistrarVerification:
        ...

    async def add_domain(self, name: str) -> DomainRecord:
        ...

    async def remove_domain(self, domain_id: str) -> None:
        ...
