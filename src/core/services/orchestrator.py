"""Detection-to-update control loop.

This module ties the `IpDetector` to the configured DNS providers. It owns
the only cross-cycle state in the application (`UpdateState`), runs exactly
one cycle at a time, and reports everything it does through an injected
`EventSink` so the CLI can stay in charge of printing and logging setup.

Lifecycle:

    Idle -> Detecting -> Comparing -> Updating -> Sleeping -> Detecting ...
    any state -> ShuttingDown -> Terminated
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from core.domain.errors import (
    AuthenticationError,
    ConfigurationError,
    ConsensusFailure,
    OperationCancelled,
    ProviderError,
    RetryExhausted,
)
from core.domain.events import CoreEvent, EventKind
from core.domain.family import IpFamily
from core.domain.models import Address, ConsensusResult, DomainTarget, UpdateKey, UpdateState
from core.interfaces.provider import DnsProvider
from core.interfaces.sink import EventSink
from core.services.ip_detector import IpDetector

logger = logging.getLogger(__name__)


class OrchestratorState(str, Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    COMPARING = "comparing"
    UPDATING = "updating"
    SLEEPING = "sleeping"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


class UpdateOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class PendingUpdate:
    """One (provider, domain, family) pair whose record must change."""

    provider: DnsProvider
    target: DomainTarget
    address: Address

    @property
    def key(self) -> UpdateKey:
        return UpdateKey(self.provider.name, self.target.fqdn, self.address.family)


@dataclass
class CycleReport:
    """What a single cycle did."""

    cycle: int
    consensus: ConsensusResult | None = None
    pending: list[UpdateKey] = field(default_factory=list)
    succeeded: list[UpdateKey] = field(default_factory=list)
    failed: list[UpdateKey] = field(default_factory=list)
    abandoned: list[UpdateKey] = field(default_factory=list)
    skipped: str | None = None


def ensure_unique_names(providers: Sequence[DnsProvider]) -> None:
    """Raise `ConfigurationError` when two providers share an identity."""

    names: set[str] = set()
    for provider in providers:
        if provider.name in names:
            raise ConfigurationError("configured twice", provider=provider.name)
        names.add(provider.name)


class UpdateOrchestrator:
    def __init__(
        self,
        providers: Sequence[DnsProvider],
        detector: IpDetector,
        *,
        interval_seconds: float,
        sink: EventSink,
        shutdown: asyncio.Event,
        disable_on_auth_failure: bool = False,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.providers = list(providers)
        self.detector = detector
        self.interval_seconds = interval_seconds
        self.shutdown = shutdown
        self.disable_on_auth_failure = disable_on_auth_failure
        self.update_state = UpdateState()
        self.disabled: set[str] = set()
        self.last_report: CycleReport | None = None
        self._sink = sink
        self._state: OrchestratorState | None = None
        self._cycle = 0
        self._cycle_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Events and state
    # ------------------------------------------------------------------

    @property
    def state(self) -> OrchestratorState | None:
        return self._state

    def _emit(self, kind: EventKind, message: str = "", **data: Any) -> None:
        event = CoreEvent(kind=kind, message=message, data=data, cycle=self._cycle or None)
        try:
            self._sink.emit(event)
        except Exception:
            logger.exception("Event sink failed on %s", kind.value)

    def _set_state(self, new: OrchestratorState) -> None:
        old = self._state
        if old is new:
            return
        self._state = new
        self._emit(
            EventKind.STATE_CHANGED,
            f"{old.value if old else '-'} -> {new.value}",
            previous=old.value if old else None,
            current=new.value,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Validate every provider; any `ConfigurationError` is fatal."""

        if self._state is not None:
            raise RuntimeError(f"orchestrator already started (state={self._state.value})")
        if not self.providers:
            raise ConfigurationError("no DNS provider is enabled")

        for provider in self.providers:
            provider.validate_config()
        ensure_unique_names(self.providers)

        self._set_state(OrchestratorState.IDLE)
        logger.info(
            "Orchestrator ready: %d provider(s), %d target(s), interval %.0fs",
            len(self.providers),
            sum(len(provider.targets) for provider in self.providers),
            self.interval_seconds,
        )

    def active_providers(self) -> list[DnsProvider]:
        return [provider for provider in self.providers if provider.name not in self.disabled]

    def needed_families(self) -> list[IpFamily]:
        wanted: set[IpFamily] = set()
        for provider in self.active_providers():
            for target in provider.targets:
                wanted.update(target.families)
        return [family for family in IpFamily.all() if family in wanted]

    async def run(self, *, once: bool = False) -> CycleReport | None:
        """Drive cycles until the shutdown event is set (or after one cycle).

        Providers and the detector are closed before returning, whatever the
        reason for stopping.
        """

        try:
            if self._state is None:
                self.start()
            while not self.shutdown.is_set():
                self.last_report = await self.run_cycle()
                if once or self.shutdown.is_set():
                    break
                self._set_state(OrchestratorState.SLEEPING)
                try:
                    await asyncio.wait_for(self.shutdown.wait(), timeout=self.interval_seconds)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self._terminate()
        return self.last_report

    async def _terminate(self) -> None:
        self._set_state(OrchestratorState.SHUTTING_DOWN)
        self._emit(
            EventKind.SHUTDOWN_INITIATED,
            "shutting down",
            requested=self.shutdown.is_set(),
            cycles=self._cycle,
        )
        for provider in self.providers:
            try:
                await provider.aclose()
            except Exception:
                logger.exception("Failed to close %s", provider.name)
        try:
            await self.detector.aclose()
        except Exception:
            logger.exception("Failed to close the detector's HTTP clients")
        self._set_state(OrchestratorState.TERMINATED)

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> CycleReport:
        async with self._cycle_lock:
            self._cycle += 1
            report = CycleReport(cycle=self._cycle)
            self._emit(EventKind.CYCLE_STARTED, f"cycle {self._cycle}")

            if self.shutdown.is_set():
                report.skipped = "shutdown requested"
                return report

            families = self.needed_families()
            if not families:
                report.skipped = "no active provider"
                logger.warning("Cycle %d skipped: every provider is disabled", self._cycle)
                return report

            self._set_state(OrchestratorState.DETECTING)
            try:
                consensus = await self._detect_unless_shutdown(families)
            except ConsensusFailure as exc:
                report.consensus = exc.result
                report.skipped = "consensus not reached"
                logger.warning("Cycle %d skipped: %s", self._cycle, exc)
                self._emit(
                    EventKind.CONSENSUS_FAILED,
                    str(exc),
                    samples=len(exc.result.samples),
                    ok=sum(1 for sample in exc.result.samples if sample.ok),
                    threshold=exc.result.threshold,
                )
                return report

            if consensus is None:
                report.skipped = "shutdown requested"
                logger.info("Cycle %d: detection abandoned, shutdown requested", self._cycle)
                return report

            report.consensus = consensus
            self._emit(
                EventKind.CONSENSUS_REACHED,
                "consensus reached",
                v4=str(consensus.v4) if consensus.v4 else None,
                v6=str(consensus.v6) if consensus.v6 else None,
            )

            self._set_state(OrchestratorState.COMPARING)
            pending = self._pending_updates(consensus)
            report.pending = [item.key for item in pending]
            if not pending:
                logger.debug("Cycle %d: every record is current", self._cycle)
                return report

            self._set_state(OrchestratorState.UPDATING)
            # All pairs are dispatched before any result is awaited.
            tasks = [asyncio.create_task(self._apply(item)) for item in pending]
            outcomes = await asyncio.gather(*tasks)

            for item, outcome in zip(pending, outcomes):
                if outcome is UpdateOutcome.SUCCEEDED:
                    report.succeeded.append(item.key)
                elif outcome is UpdateOutcome.ABANDONED:
                    report.abandoned.append(item.key)
                else:
                    report.failed.append(item.key)

            logger.info(
                "Cycle %d: %d updated, %d failed, %d abandoned",
                self._cycle,
                len(report.succeeded),
                len(report.failed),
                len(report.abandoned),
            )
            return report

    async def _detect_unless_shutdown(self, families: list[IpFamily]) -> ConsensusResult | None:
        """Run detection, or return None as soon as the shutdown event is set."""

        detection = asyncio.ensure_future(self.detector.detect(families))
        stop = asyncio.ensure_future(self.shutdown.wait())
        try:
            await asyncio.wait({detection, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            if not detection.done():
                detection.cancel()
            # Cancelling the detection cancels every per-source query it gathered.
            await asyncio.gather(detection, stop, return_exceptions=True)
        if self.shutdown.is_set():
            return None
        return detection.result()

    def _pending_updates(self, consensus: ConsensusResult) -> list[PendingUpdate]:
        pending: list[PendingUpdate] = []
        for provider in self.active_providers():
            for target in provider.targets:
                for family in IpFamily.all():
                    if family not in target.families:
                        continue
                    address = consensus.for_family(family)
                    if address is None:
                        logger.debug("%s %s: %s undetermined, skipped", provider.name, target, family.label())
                        continue
                    item = PendingUpdate(provider=provider, target=target, address=address)
                    if self.update_state.is_current(item.key, address):
                        continue
                    pending.append(item)
        return pending

    async def _apply(self, item: PendingUpdate) -> UpdateOutcome:
        provider = item.provider
        key = item.key
        data: dict[str, Any] = {
            "provider": provider.name,
            "domain": key.fqdn,
            "family": key.family.value,
            "address": str(item.address),
        }

        if self.shutdown.is_set():
            self._emit(EventKind.UPDATE_ABANDONED, "shutdown before dispatch", **data)
            return UpdateOutcome.ABANDONED

        try:
            await provider.update_record(item.target, item.address)
        except OperationCancelled:
            logger.info("%s %s: abandoned on shutdown", provider.name, key.fqdn)
            self._emit(EventKind.UPDATE_ABANDONED, "shutdown before send", **data)
            return UpdateOutcome.ABANDONED
        except AuthenticationError as exc:
            logger.error("%s: credentials rejected: %s", provider.name, exc)
            self._emit(EventKind.UPDATE_FAILED, str(exc), status=exc.status_code, auth=True, **data)
            if self.disable_on_auth_failure and provider.name not in self.disabled:
                self.disabled.add(provider.name)
                logger.warning("%s disabled until restart", provider.name)
                self._emit(EventKind.PROVIDER_DISABLED, "credentials rejected", provider=provider.name)
            return UpdateOutcome.FAILED
        except RetryExhausted as exc:
            self._emit(
                EventKind.RETRY_EXHAUSTED,
                str(exc),
                attempts=exc.attempts,
                status=exc.status_code,
                **data,
            )
            self._emit(EventKind.UPDATE_FAILED, str(exc), status=exc.status_code, auth=False, **data)
            return UpdateOutcome.FAILED
        except ProviderError as exc:
            logger.error("%s %s: %s", provider.name, key.fqdn, exc)
            self._emit(EventKind.UPDATE_FAILED, str(exc), status=exc.status_code, auth=False, **data)
            return UpdateOutcome.FAILED
        except Exception as exc:
            logger.exception("%s %s: unexpected error", provider.name, key.fqdn)
            self._emit(EventKind.UPDATE_FAILED, f"{type(exc).__name__}: {exc}", status=None, auth=False, **data)
            return UpdateOutcome.FAILED

        self.update_state.record(key, item.address)
        logger.info("%s %s %s -> %s", provider.name, key.family.record_type, key.fqdn, item.address)
        self._emit(EventKind.UPDATE_SUCCEEDED, "record updated", **data)
        return UpdateOutcome.SUCCEEDED
