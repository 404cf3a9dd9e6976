"""Shared fixtures and fakes for the dyndns-sync test suite."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Iterable

import pytest

from core.config import AppSettings, CloudflareConfig, RetrySettings, SubdomainConfig
from core.domain.events import CoreEvent, EventKind
from core.domain.family import IpFamily, IpVersionSelection
from core.domain.models import Address, DomainTarget

ZONE_ID = "0123456789abcdef0123456789abcdef"


# ============================================================================
# Environment isolation
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep user config files and DYNDNS_SYNC_* variables out of every test."""

    for key in list(os.environ):
        if key.upper().startswith("DYNDNS_SYNC_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("DYNDNS_SYNC_CONFIG_FILE", str(tmp_path / "absent.toml"))
    monkeypatch.chdir(tmp_path)
    yield


# ============================================================================
# Fakes
# ============================================================================


class FakeSource:
    """Discovery source with scripted answers.

    An answer is an address string, an exception instance, or "hang".
    """

    def __init__(self, name: str, v4=None, v6=None, *, on_lookup: Callable[[], object] | None = None):
        self.name = name
        self._answers = {IpFamily.V4: v4, IpFamily.V6: v6}
        self.families = frozenset(family for family, answer in self._answers.items() if answer is not None)
        self.calls: list[IpFamily] = []
        self._on_lookup = on_lookup

    async def lookup(self, family: IpFamily) -> Address:
        self.calls.append(family)
        if self._on_lookup is not None:
            waiter = self._on_lookup()
            if asyncio.iscoroutine(waiter):
                await waiter
        answer = self._answers[family]
        if answer == "hang":
            await asyncio.sleep(3600)
        if isinstance(answer, Exception):
            raise answer
        return Address.parse(answer)


class FakeProvider:
    """DNS provider recording every update; `errors` are raised in call order."""

    kind = "fake"

    def __init__(
        self,
        name: str = "fake:example.com",
        *,
        zone: str = "example.com",
        subdomains: Iterable[tuple[str, IpVersionSelection]] = (("www", IpVersionSelection.BOTH),),
        errors: Iterable[BaseException | None] = (),
        config_error: Exception | None = None,
    ) -> None:
        self.name = name
        self._targets = [
            DomainTarget(provider=name, zone=zone, name=label, families=selection.families())
            for label, selection in subdomains
        ]
        self.errors = list(errors)
        self.config_error = config_error
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    @property
    def targets(self) -> list[DomainTarget]:
        return self._targets

    def validate_config(self) -> None:
        if self.config_error is not None:
            raise self.config_error

    async def update_record(self, domain: DomainTarget, address: Address) -> None:
        self.calls.append((domain.fqdn, str(address)))
        if self.errors:
            error = self.errors.pop(0)
            if error is not None:
                raise error

    async def check_access(self) -> str:
        return "ok"

    async def aclose(self) -> None:
        self.closed = True


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[CoreEvent] = []

    def emit(self, event: CoreEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[EventKind]:
        return [event.kind for event in self.events]

    def of(self, kind: EventKind) -> list[CoreEvent]:
        return [event for event in self.events if event.kind is kind]


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def fast_retry() -> RetrySettings:
    return RetrySettings(
        max_attempts=3,
        base_delay_seconds=0.0,
        max_delay_seconds=0.0,
        jitter_seconds=0.0,
        rate_limit_floor_seconds=0.0,
    )


@pytest.fixture
def settings(fast_retry) -> AppSettings:
    return AppSettings(retry=fast_retry)


@pytest.fixture
def cloudflare_config() -> CloudflareConfig:
    return CloudflareConfig(
        name="example.com",
        zone_id=ZONE_ID,
        api_token="cf-token-123",
        subdomains=[SubdomainConfig(name="www"), SubdomainConfig(name="", ip_version=IpVersionSelection.V4)],
    )
