"""DNS provider: ArvanCloud (CDN API 4.0).

Behavior:
- Records are searched by type and relative name (`@` for the apex); the
  search is a substring match, so results are filtered to the exact name.
- Existing records are replaced with PUT, missing ones are created with POST.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
from pydantic import ValidationError

from adapters.http_client import build_async_client
from adapters.providers.models import (
    ArvanDnsRecord,
    ArvanIpFilterMode,
    ArvanRecordList,
    ArvanRecordValue,
)
from adapters.providers.transport import ThrottledTransport
from adapters.providers.validation import build_targets, check_credential
from core.config import AppSettings, ArvanCloudConfig
from core.domain.errors import ConfigurationError, ProviderError
from core.domain.models import Address, DomainTarget
from core.interfaces.provider import DnsProvider
from core.services.throttle import RateLimiter, RetryPolicy

logger = logging.getLogger(__name__)

API_BASE = "https://napi.arvancloud.ir/cdn/4.0"

_KEY_PREFIX = "apikey "


def authorization_header(api_token: str) -> str:
    """ArvanCloud expects `Apikey <key>`; accept the key with or without the prefix."""

    token = api_token.strip()
    if token.lower().startswith(_KEY_PREFIX):
        return f"Apikey {token[len(_KEY_PREFIX):].strip()}"
    return f"Apikey {token}"


def _bare_key(api_token: str) -> str:
    return authorization_header(api_token)[len(_KEY_PREFIX):]


class ArvanCloudClient(DnsProvider):
    kind = "arvancloud"

    def __init__(self, config: ArvanCloudConfig, transport: ThrottledTransport) -> None:
        self.config = config
        self.name = transport.provider
        self._http = transport
        self._targets: list[DomainTarget] | None = None

    @classmethod
    def from_config(
        cls,
        config: ArvanCloudConfig,
        *,
        settings: AppSettings,
        cancel: asyncio.Event | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ArvanCloudClient":
        name = f"arvancloud:{config.domain or '?'}"
        client = build_async_client(
            settings,
            base_url=API_BASE,
            extra_headers={
                "Authorization": authorization_header(config.api_token),
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
                zone=self.config.domain,
                subdomains=self.config.subdomains,
            )
        return self._targets

    def validate_config(self) -> None:
        if not self.config.domain.strip():
            raise ConfigurationError("domain is missing", provider=self.name)
        check_credential(_bare_key(self.config.api_token), provider=self.name, field="api_token")
        _ = self.targets

    def _records_path(self) -> str:
        return f"/domains/{self.config.domain.strip().lower()}/dns-records"

    async def _find_records(self, record_name: str, record_type: str) -> list[ArvanDnsRecord]:
        response = await self._http.request(
            "GET",
            self._records_path(),
            params={"type": record_type.lower(), "search": record_name},
            description=f"lookup {record_type} {record_name}",
        )
        payload = self._http.json_body(response, provider=self.name)
        try:
            records = ArvanRecordList.model_validate(payload).data
        except ValidationError as exc:
            raise ProviderError(f"unexpected record list: {exc}", provider=self.name) from exc
        return [
            record
            for record in records
            if record.name.lower() == record_name and record.type.lower() == record_type.lower()
        ]

    def _body(self, record_name: str, address: Address) -> dict[str, Any]:
        return ArvanDnsRecord(
            type=address.family.record_type.lower(),
            name=record_name,
            value=[ArvanRecordValue(ip=str(address))],
            ttl=self.config.ttl,
            cloud=self.config.cloud,
            ip_filter_mode=ArvanIpFilterMode(),
        ).model_dump(mode="json", exclude={"id"})

    async def update_record(self, domain: DomainTarget, address: Address) -> None:
        record_name = domain.record_name
        record_type = address.family.record_type
        records = await self._find_records(record_name, record_type)

        if not records:
            logger.info("%s: no %s record for %s, creating", self.name, record_type, domain.fqdn)
            await self._http.request(
                "POST",
                self._records_path(),
                json=self._body(record_name, address),
                description=f"create {record_type} {domain.fqdn}",
            )
            return

        for record in records:
            if record.addresses() == [str(address)]:
                logger.debug("%s: %s %s already %s", self.name, record_type, domain.fqdn, address)
                continue
            if not record.id:
                raise ProviderError(f"record {record_name!r} has no id", provider=self.name)
            logger.info(
                "%s: %s %s %s -> %s",
                self.name,
                record_type,
                domain.fqdn,
                ",".join(record.addresses()) or "-",
                address,
            )
            await self._http.request(
                "PUT",
                f"{self._records_path()}/{record.id}",
                json=self._body(record_name, address),
                description=f"update {record_type} {domain.fqdn}",
            )

    async def check_access(self) -> str:
        response = await self._http.request(
            "GET",
            f"/domains/{self.config.domain.strip().lower()}",
            description="domain status",
        )
        payload = self._http.json_body(response, provider=self.name)
        data = payload.get("data") if isinstance(payload, dict) else None
        status = data.get("status") if isinstance(data, dict) else None
        return f"domain {self.config.domain} {status or 'reachable'}"

    async def aclose(self) -> None:
        await self._http.aclose()
