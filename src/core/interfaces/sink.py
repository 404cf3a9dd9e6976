"""Contract for the observability sink the core reports to."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from core.domain.events import CoreEvent


@runtime_checkable
class EventSink(Protocol):
    def emit(self, event: CoreEvent) -> None:
        """Receive one event. Must not raise and must not block."""

        ...
