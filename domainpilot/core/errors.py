from __future__ import annotations


class DomainPilotError(Exception):
    """Base error for domainpilot."""


class ConfigurationError(DomainPilotError):
    """Malformed domain request or missing platform/provider configuration."""


class TenantNotFoundError(DomainPilotError):
    """Tenant record does not exist."""


class InvalidTransitionError(DomainPilotError):
    """Requested domain status transition is not allowed from the current state."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"cannot transition domain status from {current} to {target}")
        self.current = current
        self.target = target


class FinalizationConflict(DomainPilotError):
    """Another finalize call already activated the domain; callers treat this as a no-op."""


class DnsLookupError(DomainPilotError):
    """DNS resolution failed for a reason other than a missing record."""

    def __init__(self, kind: str, message: str = "") -> None:
        super().__init__(message or kind)
        self.kind = kind


class RegistrarError(DomainPilotError):
    """Registrar API request failure."""


class RegistrarAuthError(RegistrarError):
    """Registrar API rejected the configured credentials."""


class RegistrarRateLimitError(RegistrarError):
    """Registrar API kept rate limiting after bounded retries."""


class IntegrationUnavailableError(DomainPilotError):
    """External integration is temporarily unavailable (circuit open)."""
