"""Discovery source: addresses bound to local network interfaces.

Only globally routable addresses count; private, link-local and loopback
addresses are ignored. Behind NAT this source usually fails for IPv4 and
simply loses the consensus vote.
"""

from __future__ import annotations

import ipaddress
import socket
from collections.abc import Iterable

import psutil

from core.domain.family import IpFamily
from core.domain.models import Address
from core.interfaces.source import DiscoverySource

_SOCKET_FAMILY = {
    IpFamily.V4: socket.AF_INET,
    IpFamily.V6: socket.AF_INET6,
}


class InterfaceIpSource(DiscoverySource):
    name = "interfaces"
    families = frozenset(IpFamily.all())

    def __init__(self, interface_names: Iterable[str] = ()) -> None:
        self._only = frozenset(interface_names)

    def global_addresses(self, family: IpFamily) -> list[Address]:
        found: list[Address] = []
        interfaces = psutil.net_if_addrs()
        for iface in sorted(interfaces):
            if self._only and iface not in self._only:
                continue
            for entry in interfaces[iface]:
                if entry.family != _SOCKET_FAMILY[family]:
                    continue
                # Strip an IPv6 zone suffix ("fe80::1%eth0").
                text = entry.address.split("%", 1)[0]
                try:
                    value = ipaddress.ip_address(text)
                except ValueError:
                    continue
                if value.is_global:
                    found.append(Address(value=value))
        return found

    async def lookup(self, family: IpFamily) -> Address:
        found = self.global_addresses(family)
        if not found:
            raise LookupError(f"no global {family.label()} address on local interfaces")
        return found[0]
