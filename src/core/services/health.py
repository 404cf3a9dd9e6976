"""Health and counters derived from the core event stream."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace

from core.domain.events import CoreEvent, EventKind
from core.interfaces.sink import EventSink

MAX_CONSECUTIVE_FAILURES = 3
MAX_SECONDS_WITHOUT_SUCCESS = 900.0


@dataclass
class HealthSnapshot:
    cycles: int = 0
    update_attempts: int = 0
    updates_succeeded: int = 0
    updates_failed: int = 0
    updates_abandoned: int = 0
    retries_exhausted: int = 0
    consensus_failures: int = 0
    consecutive_failures: int = 0
    disabled_providers: list[str] = field(default_factory=list)
    last_addresses: dict[str, str] = field(default_factory=dict)
    seconds_since_success: float | None = None
    healthy: bool = True


class HealthTracker(EventSink):
    """Tallies updates and decides whether the service looks healthy.

    Unhealthy after `max_failures` consecutive update failures, or when
    `max_silence` seconds passed since the last success (once one was seen).
    """

    def __init__(
        self,
        *,
        max_failures: int = MAX_CONSECUTIVE_FAILURES,
        max_silence: float = MAX_SECONDS_WITHOUT_SUCCESS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_failures = max_failures
        self.max_silence = max_silence
        self._clock = clock
        self._snapshot = HealthSnapshot()
        self._last_success: float | None = None

    def emit(self, event: CoreEvent) -> None:
        snap = self._snapshot
        kind = event.kind
        if kind is EventKind.CYCLE_STARTED:
            snap.cycles += 1
        elif kind is EventKind.CONSENSUS_FAILED:
            snap.consensus_failures += 1
        elif kind is EventKind.UPDATE_SUCCEEDED:
            snap.update_attempts += 1
            snap.updates_succeeded += 1
            snap.consecutive_failures = 0
            self._last_success = self._clock()
            family = event.data.get("family")
            if family:
                snap.last_addresses[str(family)] = str(event.data.get("address"))
        elif kind is EventKind.UPDATE_FAILED:
            snap.update_attempts += 1
            snap.updates_failed += 1
            snap.consecutive_failures += 1
        elif kind is EventKind.UPDATE_ABANDONED:
            snap.updates_abandoned += 1
        elif kind is EventKind.RETRY_EXHAUSTED:
            snap.retries_exhausted += 1
        elif kind is EventKind.PROVIDER_DISABLED:
            name = str(event.data.get("provider", ""))
            if name and name not in snap.disabled_providers:
                snap.disabled_providers.append(name)

    @property
    def healthy(self) -> bool:
        return self.snapshot().healthy

    def snapshot(self) -> HealthSnapshot:
        snap = self._snapshot
        silence = None if self._last_success is None else self._clock() - self._last_success
        snap.seconds_since_success = silence
        snap.healthy = snap.consecutive_failures < self.max_failures and (
            silence is None or silence <= self.max_silence
        )
        return replace(
            snap,
            last_addresses=dict(snap.last_addresses),
            disabled_providers=list(snap.disabled_providers),
        )


class FanOutSink(EventSink):
    """Deliver every event to several sinks, in order."""

    def __init__(self, sinks: Iterable[EventSink]) -> None:
        self.sinks = list(sinks)

    def emit(self, event: CoreEvent) -> None:
        for sink in self.sinks:
            sink.emit(event)
