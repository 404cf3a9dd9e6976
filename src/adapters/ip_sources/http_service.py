"""Discovery source: public "what is my IP" HTTP services.

Behavior:
- One endpoint per family; the request goes out through a client pinned to
  that family, so the service reports the address of that family.
- Accepts plain-text bodies and JSON bodies carrying the address under one of
  the common keys.
- Each family has its own hourly budget. An exhausted budget fails the
  lookup at once, so the source loses its vote instead of delaying the cycle.
- Network errors and 5xx answers are retried `descriptor.retries` times.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping

import httpx

from core.config import SourceDescriptor
from core.domain.errors import SourceBudgetExhausted
from core.domain.family import IpFamily
from core.domain.models import Address
from core.interfaces.source import DiscoverySource
from core.services.throttle import RateLimiter

logger = logging.getLogger(__name__)

_JSON_KEYS = ("ip", "address", "ipAddress", "query")


def parse_address_payload(body: str) -> Address:
    """Extract an address from a plain-text or JSON response body."""

    text = body.strip()
    if text.startswith("{"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            for key in _JSON_KEYS:
                value = data.get(key)
                if isinstance(value, str):
                    return Address.parse(value)
        raise ValueError(f"no address field in JSON response: {text[:80]!r}")
    # Some services append a newline or extra lines; the first token is the address.
    first = text.split()[0] if text else ""
    return Address.parse(first)


class HttpIpSource(DiscoverySource):
    """Query one HTTP service for the caller's public address."""

    def __init__(
        self,
        descriptor: SourceDescriptor,
        clients: Mapping[IpFamily, httpx.AsyncClient],
        *,
        limiters: Mapping[IpFamily, RateLimiter] | None = None,
    ) -> None:
        self.name = descriptor.name
        self._retries = descriptor.retries
        self._retry_delay = descriptor.retry_delay_seconds
        self._limiters = dict(limiters or {})
        self._urls: dict[IpFamily, str] = {}
        if descriptor.url_v4:
            self._urls[IpFamily.V4] = descriptor.url_v4
        if descriptor.url_v6:
            self._urls[IpFamily.V6] = descriptor.url_v6
        self.families = frozenset(self._urls)
        self._clients = clients

    async def lookup(self, family: IpFamily) -> Address:
        url = self._urls.get(family)
        if url is None:
            raise LookupError(f"{self.name} has no {family.label()} endpoint")

        limiter = self._limiters.get(family)
        attempt = 0
        while True:
            attempt += 1
            if limiter is not None and not limiter.try_acquire():
                raise SourceBudgetExhausted(self.name, limiter.capacity)
            try:
                response = await self._clients[family].get(url)
                response.raise_for_status()
                break
            except (httpx.TransportError, httpx.HTTPStatusError) as exc:
                if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code < 500:
                    raise
                if attempt > self._retries:
                    raise
                logger.debug("%s %s query failed, retrying: %s", self.name, family.label(), exc)
                await asyncio.sleep(self._retry_delay)

        address = parse_address_payload(response.text)
        if address.family is not family:
            raise ValueError(f"{self.name} answered {address} to an {family.label()} query")
        return address

    def __repr__(self) -> str:
        return f"HttpIpSource(name={self.name!r}, families={sorted(f.value for f in self.families)})"
