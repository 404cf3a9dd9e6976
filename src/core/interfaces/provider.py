"""Contract for DNS provider clients.

New providers are added by implementing these operations; no base class is
required.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from core.domain.models import Address, DomainTarget


@runtime_checkable
class DnsProvider(Protocol):
    """Minimal capability set the orchestrator relies on."""

    name: str
    kind: str

    @property
    def targets(self) -> list[DomainTarget]:
        """Domains this client keeps up to date."""

        ...

    def validate_config(self) -> None:
        """Raise `ConfigurationError` if credentials or targets are malformed.

        Does not contact the provider: authorization problems surface on the
        first real call.
        """

        ...

    async def update_record(self, domain: DomainTarget, address: Address) -> None:
        """Point `domain` at `address`, raising `ProviderError` on failure.

        Safe to call twice with the same address.
        """

        ...

    async def check_access(self) -> str:
        """One read-only call confirming credentials; returns a short status."""

        ...

    async def aclose(self) -> None:
        ...
