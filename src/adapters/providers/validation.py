"""Offline checks shared by the provider clients' `validate_config`."""

from __future__ import annotations

import re

from pydantic import ValidationError

from core.config import SubdomainConfig
from core.domain.errors import ConfigurationError
from core.domain.models import DomainTarget

_PLACEHOLDER_RE = re.compile(r"^(<.*>|your[_-].*|changeme|change[_-]me|placeholder|x+|\*+|token|api[_-]?key)$", re.I)


def check_credential(value: str, *, provider: str, field: str) -> None:
    """Reject empty, whitespace-bearing or obviously placeholder credentials."""

    if not value or not value.strip():
        raise ConfigurationError(f"{field} is missing", provider=provider)
    if any(ch.isspace() for ch in value):
        raise ConfigurationError(f"{field} contains whitespace", provider=provider)
    if _PLACEHOLDER_RE.match(value):
        raise ConfigurationError(f"{field} still holds the example placeholder", provider=provider)


def build_targets(
    *,
    provider: str,
    zone: str,
    subdomains: list[SubdomainConfig],
) -> list[DomainTarget]:
    if not subdomains:
        raise ConfigurationError("no subdomains configured", provider=provider)

    targets: list[DomainTarget] = []
    seen: set[str] = set()
    for sub in subdomains:
        try:
            target = DomainTarget(
                provider=provider,
                zone=zone,
                name=sub.name,
                families=sub.ip_version.families(),
            )
        except ValidationError as exc:
            label = sub.name or "@"
            first = exc.errors()[0]["msg"] if exc.errors() else str(exc)
            raise ConfigurationError(f"invalid subdomain {label!r}: {first}", provider=provider) from exc
        if target.fqdn in seen:
            raise ConfigurationError(f"duplicate subdomain {target.fqdn!r}", provider=provider)
        seen.add(target.fqdn)
        targets.append(target)
    return targets
