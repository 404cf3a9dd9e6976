"""httpx wrapper.

Responsibilities:
- Standardizes timeouts, headers and address-family pinning for every
  outbound request.
- Eases testing: callers accept an injected `transport` (e.g.
  `httpx.MockTransport`).
"""

from __future__ import annotations

import httpx

from core.config import AppSettings
from core.domain.family import IpFamily

# Binding the local side to the family's wildcard address forces the
# connection (and therefore the address the service sees) onto that family.
_LOCAL_ADDRESS = {
    IpFamily.V4: "0.0.0.0",
    IpFamily.V6: "::",
}


def build_async_client(
    settings: AppSettings | None = None,
    *,
    extra_headers: dict[str, str] | None = None,
    base_url: str = "",
    family: IpFamily | None = None,
    timeout_seconds: float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create an `httpx.AsyncClient` with safe defaults.

    - `family` pins outgoing connections to IPv4 or IPv6.
    - `transport` overrides the network layer entirely (tests).
    """

    settings = settings or AppSettings()
    headers: dict[str, str] = {
        "User-Agent": settings.user_agent,
        "Accept": "application/json, text/plain;q=0.9, */*;q=0.8",
    }
    if extra_headers:
        headers.update(extra_headers)

    if transport is None and family is not None:
        transport = httpx.AsyncHTTPTransport(local_address=_LOCAL_ADDRESS[family])

    return httpx.AsyncClient(
        base_url=base_url,
        timeout=httpx.Timeout(timeout_seconds or settings.http_timeout_seconds),
        follow_redirects=True,
        headers=headers,
        transport=transport,
    )
