"""DNS provider: Cloudflare (API v4).

Behavior:
- Records are looked up by type and fully qualified name.
- Existing records are PATCHed, missing ones are created with POST.
- Records already holding the address are left alone (no write is sent).
"""

from __future__ import annotations

import asyncio
import logging
import re

import httpx
from pydantic import ValidationError

from adapters.http_client import build_async_client
from adapters.providers.models import (
    CloudflareDnsRecord,
    CloudflareRecordBody,
    CloudflareRecordList,
    CloudflareZoneResponse,
)
from adapters.providers.transport import ThrottledTransport
from adapters.providers.validation import build_targets, check_credential
from core.config import AppSettings, CloudflareConfig
from core.domain.errors import ConfigurationError, ProviderError
from core.domain.models import Address, DomainTarget
from core.interfaces.provider import DnsProvider
from core.services.throttle import RateLimiter, RetryPolicy

logger = logging.getLogger(__name__)

API_BASE = "https://api.cloudflare.com/client/v4"

_ZONE_ID_RE = re.compile(r"^[0-9a-f]{32}$", re.I)


def _same_address(content: str, address: Address) -> bool:
    try:
        return Address.parse(content) == address
    except ValueError:
        return False


class CloudflareClient(DnsProvider):
    kind = "cloudflare"

    def __init__(self, config: CloudflareConfig, transport: ThrottledTransport) -> None:
        self.config = config
        self.name = transport.provider
        self._http = transport
        self._targets: list[DomainTarget] | None = None

    @classmethod
    def from_config(
        cls,
        config: CloudflareConfig,
        *,
        settings: AppSettings,
        cancel: asyncio.Event | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "CloudflareClient":
        name = f"cloudflare:{config.name or config.zone_id or '?'}"
        client = build_async_client(
            settings,
            base_url=API_BASE,
            extra_headers={
                "Authorization": f"Bearer {config.api_token.strip()}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )
        throttled = ThrottledTransport(
            client,
            provider=name,
            limiter=RateLimiter.from_settings(config.rate_limit, name=name),
            retry=RetryPolicy.from_settings(settings.retry),
            cancel=cancel,
        )
        return cls(config, throttled)

    @property
    def targets(self) -> list[DomainTarget]:
        if self._targets is None:
            self._targets = build_targets(
                provider=self.name,
                zone=self.config.name,
                subdomains=self.config.subdomains,
            )
        return self._targets

    def validate_config(self) -> None:
        if not self.config.name.strip():
            raise ConfigurationError("zone name is missing", provider=self.name)
        zone_id = self.config.zone_id.strip()
        if not zone_id:
            raise ConfigurationError("zone_id is missing", provider=self.name)
        if not _ZONE_ID_RE.match(zone_id):
            raise ConfigurationError("zone_id must be 32 hexadecimal characters", provider=self.name)
        check_credential(self.config.api_token.strip(), provider=self.name, field="api_token")
        _ = self.targets

    def _records_path(self) -> str:
        return f"/zones/{self.config.zone_id.strip()}/dns_records"

    def _check_envelope(self, payload: object, action: str) -> None:
        if isinstance(payload, dict) and payload.get("success") is False:
            errors = payload.get("errors") or []
            detail = "; ".join(str(item.get("message", item)) for item in errors if isinstance(item, dict))
            raise ProviderError(f"{action} rejected: {detail or 'unknown error'}", provider=self.name)

    async def _find_records(self, fqdn: str, record_type: str) -> list[CloudflareDnsRecord]:
        response = await self._http.request(
            "GET",
            self._records_path(),
            params={"type": record_type, "name": fqdn},
            description=f"lookup {record_type} {fqdn}",
        )
        payload = self._http.json_body(response, provider=self.name)
        self._check_envelope(payload, "record lookup")
        try:
            return CloudflareRecordList.model_validate(payload).result
        except ValidationError as exc:
            raise ProviderError(f"unexpected record list: {exc}", provider=self.name) from exc

    def _body(self, fqdn: str, address: Address) -> dict[str, object]:
        return CloudflareRecordBody(
            type=address.family.record_type,
            name=fqdn,
            content=str(address),
            ttl=self.config.ttl,
            proxied=self.config.proxied,
        ).model_dump(mode="json")

    async def update_record(self, domain: DomainTarget, address: Address) -> None:
        fqdn = domain.fqdn
        record_type = address.family.record_type
        records = await self._find_records(fqdn, record_type)

        if not records:
            logger.info("%s: no %s record for %s, creating", self.name, record_type, fqdn)
            response = await self._http.request(
                "POST",
                self._records_path(),
                json=self._body(fqdn, address),
                description=f"create {record_type} {fqdn}",
            )
            self._check_envelope(self._http.json_body(response, provider=self.name), "record create")
            return

        for record in records:
            if _same_address(record.content, address):
                logger.debug("%s: %s %s already %s", self.name, record_type, fqdn, address)
                continue
            logger.info("%s: %s %s %s -> %s", self.name, record_type, fqdn, record.content, address)
            response = await self._http.request(
                "PATCH",
                f"{self._records_path()}/{record.id}",
                json=self._body(fqdn, address),
                description=f"update {record_type} {fqdn}",
            )
            self._check_envelope(self._http.json_body(response, provider=self.name), "record update")

    async def check_access(self) -> str:
        response = await self._http.request(
            "GET",
            f"/zones/{self.config.zone_id.strip()}",
            description="zone status",
        )
        payload = self._http.json_body(response, provider=self.name)
        self._check_envelope(payload, "zone lookup")
        try:
            zone = CloudflareZoneResponse.model_validate(payload).result
        except ValidationError as exc:
            raise ProviderError(f"unexpected zone response: {exc}", provider=self.name) from exc
        if zone.status.lower() != "active":
            raise ProviderError(f"zone {zone.name or self.config.name} is {zone.status!r}", provider=self.name)
        return f"zone {zone.name or self.config.name} active"

    async def aclose(self) -> None:
        await self._http.aclose()
