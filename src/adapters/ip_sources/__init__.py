"""Discovery sources (concrete implementations).

Each module implements `core.interfaces.source.DiscoverySource`.
"""

from adapters.ip_sources.http_service import HttpIpSource, parse_address_payload
from adapters.ip_sources.interfaces import InterfaceIpSource

__all__ = [
	"HttpIpSource",
	"InterfaceIpSource",
	"parse_address_payload",
]
