"""DNS providers (concrete clients).

Each module implements `core.interfaces.provider.DnsProvider`.
"""

from adapters.providers.arvancloud import ArvanCloudClient
from adapters.providers.cloudflare import CloudflareClient
from adapters.providers.transport import ThrottledTransport

__all__ = [
	"ArvanCloudClient",
	"CloudflareClient",
	"ThrottledTransport",
]
