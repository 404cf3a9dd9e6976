"""Unit tests for discovery sources and the IpDetector."""

from __future__ import annotations

import asyncio
import json
import socket
from types import SimpleNamespace

import httpx
import pytest

from adapters.ip_sources import HttpIpSource, InterfaceIpSource, parse_address_payload
from adapters.ip_sources import interfaces as interfaces_module
from conftest import FakeSource
from core.config import SourceDescriptor
from core.domain.errors import ConsensusFailure, SourceBudgetExhausted
from core.domain.family import IpFamily
from core.domain.models import Address
from core.services.ip_detector import IpDetector, detect
from core.services.throttle import RateLimiter

# ============================================================================
# detect()
# ============================================================================


class TestDetect:
    @pytest.mark.asyncio
    async def test_two_agree_and_one_times_out(self):
        sources = [
            FakeSource("a", v4="1.2.3.4"),
            FakeSource("b", v4="1.2.3.4"),
            FakeSource("c", v4="hang"),
        ]

        result = await detect(sources, 2, 0.05, families=[IpFamily.V4])

        assert result.v4 == Address.parse("1.2.3.4")
        assert result.v6 is None
        failed = [sample for sample in result.samples if not sample.ok]
        assert [sample.source for sample in failed] == ["c"]
        assert "timed out" in (failed[0].error or "")

    @pytest.mark.asyncio
    async def test_three_different_answers_raise_consensus_failure(self):
        sources = [
            FakeSource("a", v4="1.1.1.1"),
            FakeSource("b", v4="2.2.2.2"),
            FakeSource("c", v4="3.3.3.3"),
        ]

        with pytest.raises(ConsensusFailure) as excinfo:
            await detect(sources, 2, 1.0, families=[IpFamily.V4])

        assert excinfo.value.result.undetermined
        assert len(excinfo.value.result.samples) == 3

    @pytest.mark.asyncio
    async def test_failing_source_becomes_failed_sample(self):
        sources = [
            FakeSource("broken", v4=RuntimeError("boom")),
            FakeSource("a", v4="1.2.3.4"),
            FakeSource("b", v4="1.2.3.4"),
        ]

        result = await detect(sources, 2, 1.0, families=[IpFamily.V4])

        broken = next(sample for sample in result.samples if sample.source == "broken")
        assert not broken.ok
        assert "boom" in (broken.error or "")
        assert result.v4 == Address.parse("1.2.3.4")

    @pytest.mark.asyncio
    async def test_families_are_decided_independently(self):
        sources = [
            FakeSource("a", v4="1.2.3.4", v6="2001:db8::1"),
            FakeSource("b", v4="1.2.3.4", v6="2001:db8::2"),
        ]

        result = await detect(sources, 2, 1.0)

        assert result.v4 == Address.parse("1.2.3.4")
        assert result.v6 is None
        assert result.determined_families() == [IpFamily.V4]

    @pytest.mark.asyncio
    async def test_unrequested_family_is_not_queried(self):
        source = FakeSource("a", v4="1.2.3.4", v6="2001:db8::1")

        await detect([source], 1, 1.0, families=[IpFamily.V6])

        assert source.calls == [IpFamily.V6]

    @pytest.mark.asyncio
    async def test_queries_run_concurrently(self):
        started = 0
        everyone_in = asyncio.Event()

        async def barrier():
            nonlocal started
            started += 1
            if started == 3:
                everyone_in.set()
            await everyone_in.wait()

        sources = [FakeSource(name, v4="1.2.3.4", on_lookup=barrier) for name in ("a", "b", "c")]

        result = await detect(sources, 3, 1.0, families=[IpFamily.V4])

        assert result.v4 == Address.parse("1.2.3.4")

    @pytest.mark.asyncio
    async def test_detector_closes_clients(self):
        closed = []

        class Client:
            async def aclose(self):
                closed.append(True)

        detector = IpDetector(
            [FakeSource("a", v4="1.2.3.4")],
            consensus_threshold=1,
            per_source_timeout=1.0,
            clients=[Client(), Client()],
        )

        result = await detector.detect([IpFamily.V4])
        await detector.aclose()

        assert result.v4 == Address.parse("1.2.3.4")
        assert closed == [True, True]


# ============================================================================
# HTTP sources
# ============================================================================


class TestParseAddressPayload:
    def test_plain_text(self):
        assert parse_address_payload(" 1.2.3.4\n") == Address.parse("1.2.3.4")

    def test_json_ip_key(self):
        assert parse_address_payload(json.dumps({"ip": "2001:db8::5"})) == Address.parse("2001:db8::5")

    def test_json_alternative_key(self):
        assert parse_address_payload('{"query": "8.8.4.4", "status": "success"}') == Address.parse("8.8.4.4")

    def test_garbage_raises(self):
        with pytest.raises(ValueError):
            parse_address_payload("<html>nope</html>")

    def test_json_without_address_raises(self):
        with pytest.raises(ValueError):
            parse_address_payload('{"status": "fail"}')


def _clients(handler):
    transport = httpx.MockTransport(handler)
    client = httpx.AsyncClient(transport=transport)
    return {IpFamily.V4: client, IpFamily.V6: client}


class TestHttpIpSource:
    @pytest.mark.asyncio
    async def test_lookup_uses_family_endpoint(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, text="93.184.216.34\n")

        source = HttpIpSource(
            SourceDescriptor(name="svc", url_v4="https://v4.example.net/", url_v6="https://v6.example.net/"),
            _clients(handler),
        )

        address = await source.lookup(IpFamily.V4)

        assert address == Address.parse("93.184.216.34")
        assert seen == ["https://v4.example.net/"]
        assert source.families == frozenset({IpFamily.V4, IpFamily.V6})

    @pytest.mark.asyncio
    async def test_wrong_family_answer_raises(self):
        source = HttpIpSource(
            SourceDescriptor(name="svc", url_v6="https://v6.example.net/"),
            _clients(lambda request: httpx.Response(200, text="1.2.3.4")),
        )

        with pytest.raises(ValueError):
            await source.lookup(IpFamily.V6)

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        source = HttpIpSource(
            SourceDescriptor(name="svc", url_v4="https://v4.example.net/", retries=0),
            _clients(lambda request: httpx.Response(503)),
        )

        with pytest.raises(httpx.HTTPStatusError):
            await source.lookup(IpFamily.V4)

    @pytest.mark.asyncio
    async def test_missing_family_endpoint(self):
        source = HttpIpSource(
            SourceDescriptor(name="svc", url_v4="https://v4.example.net/"),
            _clients(lambda request: httpx.Response(200, text="1.2.3.4")),
        )

        assert source.families == frozenset({IpFamily.V4})
        with pytest.raises(LookupError):
            await source.lookup(IpFamily.V6)


# ============================================================================
# Interface source
# ============================================================================


@pytest.fixture
def fake_interfaces(monkeypatch):
    table = {
        "lo": [SimpleNamespace(family=socket.AF_INET, address="127.0.0.1")],
        "eth0": [
            SimpleNamespace(family=socket.AF_INET, address="192.168.1.10"),
            SimpleNamespace(family=socket.AF_INET6, address="fe80::1%eth0"),
            SimpleNamespace(family=socket.AF_INET6, address="2606:4700:4700::1111"),
        ],
        "wan0": [SimpleNamespace(family=socket.AF_INET, address="93.184.216.34")],
    }
    monkeypatch.setattr(interfaces_module.psutil, "net_if_addrs", lambda: table)
    return table


class TestInterfaceIpSource:
    @pytest.mark.asyncio
    async def test_picks_global_addresses_only(self, fake_interfaces):
        source = InterfaceIpSource()

        assert await source.lookup(IpFamily.V4) == Address.parse("93.184.216.34")
        assert await source.lookup(IpFamily.V6) == Address.parse("2606:4700:4700::1111")

    @pytest.mark.asyncio
    async def test_interface_filter(self, fake_interfaces):
        source = InterfaceIpSource(["eth0"])

        with pytest.raises(LookupError):
            await source.lookup(IpFamily.V4)


# ============================================================================
# Per-source budget and retries
# ============================================================================


def _budgeted(name: str, address: str, capacity: int, **descriptor) -> HttpIpSource:
    return HttpIpSource(
        SourceDescriptor(name=name, url_v4=f"https://{name}.example.net/", **descriptor),
        _clients(lambda request: httpx.Response(200, text=address)),
        limiters={IpFamily.V4: RateLimiter(capacity, 3600)},
    )


class TestSourceBudget:
    @pytest.mark.asyncio
    async def test_source_over_budget_loses_its_vote(self):
        sources = [
            _budgeted("one", "1.2.3.4", capacity=1),
            _budgeted("two", "1.2.3.4", capacity=10),
        ]

        first = await detect(sources, 2, 1.0, families=[IpFamily.V4])
        with pytest.raises(ConsensusFailure) as excinfo:
            await detect(sources, 2, 1.0, families=[IpFamily.V4])

        assert first.v4 == Address.parse("1.2.3.4")
        samples = {sample.source: sample for sample in excinfo.value.result.samples}
        assert samples["two"].ok
        assert not samples["one"].ok
        assert "SourceBudgetExhausted" in (samples["one"].error or "")

    @pytest.mark.asyncio
    async def test_exhausted_budget_does_not_send_a_request(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text="1.2.3.4")

        limiter = RateLimiter(1, 3600)
        assert limiter.try_acquire()
        source = HttpIpSource(
            SourceDescriptor(name="svc", url_v4="https://v4.example.net/"),
            _clients(handler),
            limiters={IpFamily.V4: limiter},
        )

        with pytest.raises(SourceBudgetExhausted):
            await source.lookup(IpFamily.V4)
        assert seen == []

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self):
        answers = [httpx.Response(502), httpx.Response(200, text="1.2.3.4")]
        source = HttpIpSource(
            SourceDescriptor(name="svc", url_v4="https://v4.example.net/", retries=1, retry_delay_seconds=0),
            _clients(lambda request: answers.pop(0)),
        )

        assert await source.lookup(IpFamily.V4) == Address.parse("1.2.3.4")
        assert answers == []

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(404)

        source = HttpIpSource(
            SourceDescriptor(name="svc", url_v4="https://v4.example.net/", retries=3, retry_delay_seconds=0),
            _clients(handler),
        )

        with pytest.raises(httpx.HTTPStatusError):
            await source.lookup(IpFamily.V4)
        assert len(calls) == 1
