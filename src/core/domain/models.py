"""Domain models (Pydantic v2).

Notes:
- These models describe *what* the system knows about addresses and records,
  not *how* they are obtained or pushed.
- Everything here is immutable except `UpdateState`, which the orchestrator
  owns exclusively.
"""

from __future__ import annotations

import ipaddress
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.config import ConfigDict

from core.domain.family import IpFamily

_LABEL_RE = re.compile(r"^(?!-)[A-Za-z0-9_-]{1,63}(?<!-)$")

APEX_NAMES = frozenset({"", "@"})


def is_valid_hostname(value: str) -> bool:
    """Check a fully qualified host name or wildcard pattern (`*.example.com`)."""

    host = value.strip().rstrip(".")
    if not host or len(host) > 253:
        return False
    labels = host.split(".")
    if labels[0] == "*":
        labels = labels[1:]
        if not labels:
            return False
    return all(_LABEL_RE.match(label) for label in labels)


class Address(BaseModel):
    """An IP address tagged with its family.

    Two addresses are equal only when both family and value match exactly;
    `1.2.3.4` never equals `::ffff:1.2.3.4`.
    """

    model_config = ConfigDict(frozen=True)

    value: ipaddress.IPv4Address | ipaddress.IPv6Address = Field(
        ...,
        description="Parsed IP address.",
    )

    @classmethod
    def parse(cls, text: str) -> "Address":
        """Parse a textual address, raising `ValueError` when it is not an IP."""

        return cls(value=ipaddress.ip_address(text.strip()))

    @property
    def family(self) -> IpFamily:
        return IpFamily.V4 if self.value.version == 4 else IpFamily.V6

    def __str__(self) -> str:
        return str(self.value)


class DetectionSample(BaseModel):
    """Result of one discovery source for one family in one cycle."""

    source: str = Field(..., min_length=1, description="Discovery source identifier.")
    family: IpFamily = Field(..., description="Family that was requested.")
    address: Address | None = Field(default=None, description="Reported address, if any.")
    latency_seconds: float = Field(default=0.0, ge=0.0, description="Elapsed query time.")
    ok: bool = Field(default=False, description="True when the source answered with a usable address.")
    error: str | None = Field(default=None, description="Failure description when `ok` is False.")


class ConsensusResult(BaseModel):
    """Outcome of one detection cycle: at most one address per family."""

    v4: Address | None = None
    v6: Address | None = None
    threshold: int = Field(default=1, ge=1)
    samples: list[DetectionSample] = Field(default_factory=list)

    def for_family(self, family: IpFamily) -> Address | None:
        return self.v4 if family is IpFamily.V4 else self.v6

    @property
    def undetermined(self) -> bool:
        return self.v4 is None and self.v6 is None

    def determined_families(self) -> list[IpFamily]:
        return [family for family in IpFamily.all() if self.for_family(family) is not None]


class DomainTarget(BaseModel):
    """A domain or subdomain a provider keeps pointed at the detected address."""

    model_config = ConfigDict(frozen=True)

    provider: str = Field(..., min_length=1, description="Name of the owning provider instance.")
    zone: str = Field(..., min_length=1, description="Zone / registered domain (example.com).")
    name: str = Field(default="", description="Relative label ('' or '@' for apex, '*' for wildcard).")
    families: frozenset[IpFamily] = Field(
        default_factory=lambda: frozenset(IpFamily.all()),
        description="Families this target tracks.",
    )

    @field_validator("zone", "name")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip().rstrip(".").lower()

    @model_validator(mode="after")
    def _check_hostname(self) -> "DomainTarget":
        if not self.families:
            raise ValueError("a domain target must track at least one family")
        if not is_valid_hostname(self.fqdn):
            raise ValueError(f"invalid hostname or wildcard pattern: {self.fqdn!r}")
        return self

    @property
    def fqdn(self) -> str:
        if self.name in APEX_NAMES:
            return self.zone
        return f"{self.name}.{self.zone}"

    @property
    def record_name(self) -> str:
        """Name relative to the zone, `@` for the apex."""

        return "@" if self.name in APEX_NAMES else self.name

    def __str__(self) -> str:
        return self.fqdn


@dataclass(frozen=True)
class UpdateKey:
    """Identity of one (provider, domain, family) pair."""

    provider: str
    fqdn: str
    family: IpFamily


class UpdateState(Mapping[UpdateKey, Address]):
    """Last address successfully pushed per pair.

    Lives for the process lifetime and is never persisted. Only the
    orchestrator writes to it, and only after a confirmed provider success.
    """

    def __init__(self) -> None:
        self._entries: dict[UpdateKey, Address] = {}

    def __getitem__(self, key: UpdateKey) -> Address:
        return self._entries[key]

    def __iter__(self) -> Iterator[UpdateKey]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def is_current(self, key: UpdateKey, address: Address) -> bool:
        return self._entries.get(key) == address

    def record(self, key: UpdateKey, address: Address) -> None:
        self._entries[key] = address

    def snapshot(self) -> dict[str, Any]:
        return {
            f"{key.provider}:{key.fqdn}:{key.family.value}": str(address)
            for key, address in self._entries.items()
        }
