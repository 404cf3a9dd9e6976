"""Provider API payloads (pydantic).

Notes:
- Only the fields the clients actually read are declared; everything else in
  the provider responses is ignored.
- Outgoing bodies are built with `model_dump(mode="json")`.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ---------------------------------------------------------------------------
# Cloudflare (API v4)
# ---------------------------------------------------------------------------


class CloudflareMessage(_Lenient):
    code: int | None = None
    message: str = ""


class CloudflareDnsRecord(_Lenient):
    id: str = Field(..., min_length=1)
    type: str
    name: str
    content: str
    proxied: bool | None = None
    ttl: int | None = None


class CloudflareRecordList(_Lenient):
    success: bool = True
    errors: list[CloudflareMessage] = Field(default_factory=list)
    result: list[CloudflareDnsRecord] = Field(default_factory=list)


class CloudflareZone(_Lenient):
    id: str = ""
    name: str = ""
    status: str = ""


class CloudflareZoneResponse(_Lenient):
    success: bool = True
    errors: list[CloudflareMessage] = Field(default_factory=list)
    result: CloudflareZone


class CloudflareRecordBody(BaseModel):
    type: str
    name: str
    content: str
    ttl: int = 1
    proxied: bool = False


# ---------------------------------------------------------------------------
# ArvanCloud (CDN API 4.0)
# ---------------------------------------------------------------------------


class ArvanRecordValue(_Lenient):
    ip: str
    port: int | None = None
    weight: int = 100
    original_weight: int | None = None
    country: str = ""


class ArvanIpFilterMode(_Lenient):
    count: str = "single"
    order: str = "none"
    geo_filter: str = "none"


class ArvanDnsRecord(_Lenient):
    id: str | None = None
    type: str
    name: str
    value: list[ArvanRecordValue] | dict[str, Any] = Field(default_factory=list)
    ttl: int = 120
    cloud: bool = False
    upstream_https: str = "default"
    ip_filter_mode: ArvanIpFilterMode = Field(default_factory=ArvanIpFilterMode)

    def addresses(self) -> list[str]:
        if isinstance(self.value, list):
            return [item.ip for item in self.value]
        return []


class ArvanRecordList(_Lenient):
    data: list[ArvanDnsRecord] = Field(default_factory=list)
