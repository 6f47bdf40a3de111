from __future__ import annotations

import re

from domainpilot.core.config import get_settings, split_csv
from domainpilot.core.errors import ConfigurationError
from domainpilot.domain.state import CanonicalPreference


_HOSTNAME_PATTERN = re.compile(r"^(?=.{1,253}$)([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$")


def normalize_hostname(raw: str) -> str:
    """Lowercase a user-supplied hostname and strip protocol, path, port and trailing dot.

    Raises ConfigurationError when the result is not a valid DNS hostname.
    """
    value = (raw or "").strip().lower()
    if "://" in value:
        value = value.split("://", 1)[1]
    value = value.split("/", 1)[0].split("?", 1)[0].split(":", 1)[0].rstrip(".")
    if not value or not _HOSTNAME_PATTERN.match(value):
        raise ConfigurationError(f"Invalid domain format: {raw!r}")
    return value


def is_platform_hostname(hostname: str, platform_domain: str) -> bool:
    # Strict suffix match so lookalikes such as platform.com.evil.com are not treated as ours.
    platform = platform_domain.strip().lower().rstrip(".")
    if not platform:
        return False
    return hostname == platform or hostname.endswith(f".{platform}")


def derive_apex(hostname: str, multi_label_suffixes: list[str] | None = None) -> str:
    # Reduce to the registrable domain: last two labels, three for suffixes like co.uk.
    if multi_label_suffixes is None:
        multi_label_suffixes = split_csv(get_settings().multi_label_suffixes)
    labels = hostname.split(".")
    if labels and labels[0] == "www":
        labels = labels[1:]
    if len(labels) <= 2:
        return ".".join(labels)
    if len(labels[-1]) == 2 and labels[-2] in multi_label_suffixes:
        return ".".join(labels[-3:])
    return ".".join(labels[-2:])


def www_variant(apex: str) -> str:
    return f"www.{apex}"


def canonical_domain(hostname: str, preference: CanonicalPreference) -> str:
    # The hostname served to visitors, probed for health and registered with the registrar.
    apex = derive_apex(hostname)
    if preference == CanonicalPreference.WWW:
        return www_variant(apex)
    return apex
