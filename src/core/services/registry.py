"""Startup wiring: settings in, ready-to-run orchestrator out.

Everything is built once; adding a provider kind means adding one factory to
`_PROVIDER_FACTORIES`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from typing import Any

import httpx

from adapters.http_client import build_async_client
from adapters.ip_sources import HttpIpSource, InterfaceIpSource
from adapters.providers import ArvanCloudClient, CloudflareClient
from core.config import AppSettings
from core.domain.family import IpFamily
from core.interfaces.provider import DnsProvider
from core.interfaces.sink import EventSink
from core.interfaces.source import DiscoverySource
from core.services.ip_detector import IpDetector
from core.services.orchestrator import UpdateOrchestrator
from core.services.throttle import RateLimiter

ProviderFactory = Callable[..., DnsProvider]

SOURCE_BUDGET_WINDOW_SECONDS = 3600.0

# settings attribute -> client factory
_PROVIDER_FACTORIES: dict[str, ProviderFactory] = {
    "cloudflare": CloudflareClient.from_config,
    "arvancloud": ArvanCloudClient.from_config,
}


def build_sources(
    settings: AppSettings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> tuple[list[DiscoverySource], list[httpx.AsyncClient]]:
    """Discovery sources in configuration order, plus the clients they share."""

    clients = {
        family: build_async_client(
            settings,
            family=family,
            timeout_seconds=settings.source_timeout_seconds,
            transport=transport,
        )
        for family in IpFamily.all()
    }
    sources: list[DiscoverySource] = []
    for descriptor in settings.enabled_sources():
        limiters = {
            family: RateLimiter(
                descriptor.max_requests_per_hour,
                SOURCE_BUDGET_WINDOW_SECONDS,
                name=f"{descriptor.name} {family.label()}",
            )
            for family in IpFamily.all()
        }
        sources.append(HttpIpSource(descriptor, clients, limiters=limiters))
    if settings.interface_detection:
        sources.append(InterfaceIpSource(settings.interface_names))
    return sources, list(clients.values())


def build_detector(
    settings: AppSettings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> IpDetector:
    sources, clients = build_sources(settings, transport=transport)
    return IpDetector(
        sources,
        consensus_threshold=settings.consensus_threshold,
        per_source_timeout=settings.source_timeout_seconds,
        clients=clients,
    )


def build_providers(
    settings: AppSettings,
    *,
    cancel: asyncio.Event | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[DnsProvider]:
    providers: list[DnsProvider] = []
    for attribute, factory in _PROVIDER_FACTORIES.items():
        configs: Iterable[Any] = getattr(settings, attribute)
        for config in configs:
            if not config.enabled:
                continue
            providers.append(factory(config, settings=settings, cancel=cancel, transport=transport))
    return providers


def build_orchestrator(
    settings: AppSettings,
    *,
    sink: EventSink,
    shutdown: asyncio.Event,
    provider_transport: httpx.AsyncBaseTransport | None = None,
    source_transport: httpx.AsyncBaseTransport | None = None,
) -> UpdateOrchestrator:
    return UpdateOrchestrator(
        build_providers(settings, cancel=shutdown, transport=provider_transport),
        build_detector(settings, transport=source_transport),
        interval_seconds=settings.update_interval_seconds,
        sink=sink,
        shutdown=shutdown,
        disable_on_auth_failure=settings.disable_on_auth_failure,
    )
