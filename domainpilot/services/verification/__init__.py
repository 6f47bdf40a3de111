from domainpilot.services.verification.collector import SignalCollector
from domainpilot.services.verification.dns_checker import (
    DnsRecordChecker,
    is_conflict,
    verify_cname_multiple,
)
from domainpilot.services.verification.dual_domain import DualDomainVerifier, status_summary
from domainpilot.services.verification.health_probe import HealthProbe
from domainpilot.services.verification.registrar_check import RegistrarCheck
from domainpilot.services.verification.strategy import (
    VerificationStrategy,
    describe_reason,
    describe_verdict,
)

__all__ = [
    "DnsRecordChecker",
    "DualDomainVerifier",
    "HealthProbe",
    "RegistrarCheck",
    "SignalCollector",
    "VerificationStrategy",
    "describe_reason",
    "describe_verdict",
    "is_conflict",
    "status_summary",
    "verify_cname_multiple",
]
