"""Address family utilities for dyndns-sync.

This module centralizes the IP families the application manages. Keeping it
in the domain layer lets config, detector and providers share a single source
of truth without importing each other.
"""

from __future__ import annotations

from enum import Enum


class IpFamily(str, Enum):
    """Supported address families."""

    V4 = "v4"
    V6 = "v6"

    @classmethod
    def all(cls) -> tuple["IpFamily", ...]:
        """Return every family in detection order (v4 first)."""

        return (cls.V4, cls.V6)

    @property
    def record_type(self) -> str:
        """DNS record type holding addresses of this family."""

        return "A" if self is IpFamily.V4 else "AAAA"

    def label(self) -> str:
        """Human readable label for tables and logging."""

        return "IPv4" if self is IpFamily.V4 else "IPv6"


class IpVersionSelection(str, Enum):
    """Which families a configured subdomain should track."""

    V4 = "v4"
    V6 = "v6"
    BOTH = "both"

    def families(self) -> frozenset[IpFamily]:
        if self is IpVersionSelection.V4:
            return frozenset({IpFamily.V4})
        if self is IpVersionSelection.V6:
            return frozenset({IpFamily.V6})
        return frozenset(IpFamily.all())
