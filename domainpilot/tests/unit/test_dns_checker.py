from __future__ import annotations

import pytest

from domainpilot.providers.dns.fake import FakeDnsResolver
from domainpilot.services.verification.dns_checker import (
    DnsRecordChecker,
    is_conflict,
    verify_cname_multiple,
)


TARGET = "tenants.domainpilot.app"
APEX_IP = "216.24.57.1"


def _checker(resolver: FakeDnsResolver) -> DnsRecordChecker:
    return DnsRecordChecker(resolver, cname_target=TARGET, apex_ip=APEX_IP)


@pytest.mark.asyncio
async def test_cname_match_ignores_case_and_trailing_dot() -> None:
    resolver = FakeDnsResolver(cnames={"www.example.com": "Tenants.DomainPilot.app."})
    result = await _checker(resolver).verify_cname("www.example.com")
    assert result.verified is True
    assert result.signal == "dns"
    assert result.detail == "cname_match"
    assert result.target == TARGET


@pytest.mark.asyncio
async def test_cname_pointing_elsewhere_is_a_conflict() -> None:
    resolver = FakeDnsResolver(cnames={"www.example.com": "shops.othervendor.net"})
    result = await _checker(resolver).verify_cname("www.example.com")
    assert result.verified is False
    assert result.detail == "cname_mismatch:shops.othervendor.net"
    assert is_conflict(result)


@pytest.mark.asyncio
async def test_apex_falls_back_to_a_record() -> None:
    resolver = FakeDnsResolver(a_records={"example.com": ["10.0.0.1", APEX_IP]})
    result = await _checker(resolver).verify_cname("example.com")
    assert result.verified is True
    assert result.detail == "a_record_match"
    assert ("CNAME", "example.com") in resolver.queries
    assert ("A", "example.com") in resolver.queries


@pytest.mark.asyncio
async def test_a_record_mismatch_lists_observed_addresses() -> None:
    resolver = FakeDnsResolver(a_records={"example.com": ["10.0.0.2", "10.0.0.1"]})
    result = await _checker(resolver).verify_cname("example.com")
    assert result.verified is False
    assert result.detail == "a_record_mismatch:10.0.0.1,10.0.0.2"
    assert is_conflict(result)


@pytest.mark.asyncio
async def test_missing_records_are_not_conflicts() -> None:
    result = await _checker(FakeDnsResolver()).verify_cname("example.com")
    assert result.verified is False
    assert result.detail == "no_record"
    assert result.target is None
    assert not is_conflict(result)


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", ["nxdomain", "timeout", "servfail", "malformed"])
async def test_resolver_failures_become_unverified_results(kind: str) -> None:
    resolver = FakeDnsResolver(failures={"example.com": kind})
    result = await _checker(resolver).verify_cname("example.com")
    assert result.verified is False
    assert result.detail == f"dns_error:{kind}"
    assert not is_conflict(result)


@pytest.mark.asyncio
async def test_unexpected_resolver_exception_never_escapes() -> None:
    class BrokenResolver:
        async def resolve_cname(self, name: str) -> str | None:
            raise RuntimeError("socket exploded")

        async def resolve_a(self, name: str) -> list[str]:
            return []

    result = await _checker(BrokenResolver()).verify_cname("example.com")
    assert result.verified is False
    assert result.detail == "dns_error:RuntimeError"


@pytest.mark.asyncio
async def test_fixed_snapshot_gives_identical_results() -> None:
    resolver = FakeDnsResolver(cnames={"www.example.com": TARGET})
    checker = _checker(resolver)
    first = await checker.verify_cname("www.example.com")
    second = await checker.verify_cname("www.example.com")
    assert (first.verified, first.detail, first.target) == (second.verified, second.detail, second.target)


@pytest.mark.asyncio
async def test_multiple_resolvers_report_agreement_ratio() -> None:
    propagated = FakeDnsResolver(a_records={"example.com": [APEX_IP]})
    stale = FakeDnsResolver(a_records={"example.com": ["10.0.0.9"]})
    summary, per_resolver = await verify_cname_multiple(
        "example.com",
        {"1.1.1.1": propagated, "8.8.8.8": stale},
        cname_target=TARGET,
        apex_ip=APEX_IP,
    )
    assert summary.verified is True
    assert summary.detail == "resolvers_verified:1/2"
    assert per_resolver["1.1.1.1"].verified is True
    assert per_resolver["8.8.8.8"].detail.startswith("a_record_mismatch")
