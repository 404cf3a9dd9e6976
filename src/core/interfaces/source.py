"""Contract for IP discovery sources.

Notes:
- A structural contract (Protocol): HTTP services and the local interface
  reader are interchangeable and testable without a shared base class.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from core.domain.family import IpFamily
from core.domain.models import Address


@runtime_checkable
class DiscoverySource(Protocol):
    """Anything that can report the machine's current public address.

    Rules:
    - `lookup` is async because it typically does I/O.
    - It returns exactly one address of the requested family or raises.
    """

    name: str
    families: frozenset[IpFamily]

    async def lookup(self, family: IpFamily) -> Address:
        """Return the address this source sees for `family`."""

        ...
