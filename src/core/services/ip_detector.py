"""Public address detection by multi-source consensus.

This module queries every configured discovery source concurrently and
decides, per family, which address the majority of them report. It knows
nothing about providers or scheduling; the orchestrator calls `detect` once
per cycle.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable, Sequence
from typing import Protocol

from core.domain.errors import ConsensusFailure
from core.domain.family import IpFamily
from core.domain.models import Address, ConsensusResult, DetectionSample
from core.interfaces.source import DiscoverySource

logger = logging.getLogger(__name__)


class _Closeable(Protocol):
    async def aclose(self) -> None: ...


def compute_consensus(
    samples: Iterable[DetectionSample],
    threshold: int,
    family: IpFamily,
    order: Sequence[str] = (),
) -> Address | None:
    """Pick the address reported by the most sources for `family`.

    Only successful samples of the right family vote. The largest group wins
    when it reaches `threshold`; between equally large groups the one whose
    earliest reporter comes first in `order` wins.
    """

    rank = {name: index for index, name in enumerate(order)}
    votes: dict[Address, int] = {}
    first_seen: dict[Address, int] = {}

    for sample in samples:
        if not sample.ok or sample.address is None or sample.family is not family:
            continue
        if sample.address.family is not family:
            continue
        address = sample.address
        votes[address] = votes.get(address, 0) + 1
        position = rank.get(sample.source, len(rank))
        first_seen[address] = min(first_seen.get(address, position), position)

    if not votes:
        return None

    winner = min(votes, key=lambda address: (-votes[address], first_seen[address]))
    if votes[winner] < threshold:
        return None
    return winner


async def _query(
    source: DiscoverySource,
    family: IpFamily,
    timeout: float,
) -> DetectionSample:
    started = time.perf_counter()
    try:
        address = await asyncio.wait_for(source.lookup(family), timeout=timeout)
    except asyncio.TimeoutError:
        return DetectionSample(
            source=source.name,
            family=family,
            latency_seconds=time.perf_counter() - started,
            error=f"timed out after {timeout:.1f}s",
        )
    except Exception as exc:
        return DetectionSample(
            source=source.name,
            family=family,
            latency_seconds=time.perf_counter() - started,
            error=f"{type(exc).__name__}: {exc}",
        )

    elapsed = time.perf_counter() - started
    if address.family is not family:
        return DetectionSample(
            source=source.name,
            family=family,
            address=address,
            latency_seconds=elapsed,
            error=f"wrong family: got {address}",
        )
    return DetectionSample(
        source=source.name,
        family=family,
        address=address,
        latency_seconds=elapsed,
        ok=True,
    )


async def detect(
    sources: Sequence[DiscoverySource],
    consensus_threshold: int,
    per_source_timeout: float,
    families: Iterable[IpFamily] = IpFamily.all(),
) -> ConsensusResult:
    """Query all sources and return the consensus per family.

    Raises `ConsensusFailure` (carrying the partial result) when no requested
    family reached the threshold.
    """

    requested = set(families)
    wanted = [family for family in IpFamily.all() if family in requested]

    # Every query is scheduled before any is awaited.
    tasks = [
        asyncio.create_task(_query(source, family, per_source_timeout))
        for family in wanted
        for source in sources
        if family in source.families
    ]
    samples: list[DetectionSample] = list(await asyncio.gather(*tasks)) if tasks else []

    for sample in samples:
        if sample.ok:
            logger.debug(
                "%s %s -> %s (%.3fs)",
                sample.source,
                sample.family.label(),
                sample.address,
                sample.latency_seconds,
            )
        else:
            logger.debug("%s %s failed: %s", sample.source, sample.family.label(), sample.error)

    order = [source.name for source in sources]
    picked = {
        family: compute_consensus(samples, consensus_threshold, family, order)
        for family in wanted
    }
    result = ConsensusResult(
        v4=picked.get(IpFamily.V4),
        v6=picked.get(IpFamily.V6),
        threshold=consensus_threshold,
        samples=samples,
    )

    if result.undetermined:
        raise ConsensusFailure(result)
    return result


class IpDetector:
    """Holds the configured sources and the HTTP clients they share."""

    def __init__(
        self,
        sources: Sequence[DiscoverySource],
        *,
        consensus_threshold: int,
        per_source_timeout: float,
        clients: Iterable[_Closeable] = (),
    ) -> None:
        if consensus_threshold < 1:
            raise ValueError("consensus_threshold must be >= 1")
        self.sources = list(sources)
        self.consensus_threshold = consensus_threshold
        self.per_source_timeout = per_source_timeout
        self._clients = list(clients)

    async def detect(self, families: Iterable[IpFamily] = IpFamily.all()) -> ConsensusResult:
        return await detect(
            self.sources,
            self.consensus_threshold,
            self.per_source_timeout,
            families=families,
        )

    async def aclose(self) -> None:
        for client in self._clients:
            await client.aclose()
        self._clients.clear()
