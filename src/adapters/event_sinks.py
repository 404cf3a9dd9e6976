"""Event sink that turns core events into log records."""

from __future__ import annotations

import logging

from core.domain.events import CoreEvent, EventKind
from core.interfaces.sink import EventSink

logger = logging.getLogger("dyndns_sync.events")

_LEVELS: dict[EventKind, int] = {
    EventKind.CYCLE_STARTED: logging.DEBUG,
    EventKind.STATE_CHANGED: logging.DEBUG,
    EventKind.CONSENSUS_REACHED: logging.INFO,
    EventKind.UPDATE_SUCCEEDED: logging.INFO,
    EventKind.SHUTDOWN_INITIATED: logging.INFO,
    EventKind.CONSENSUS_FAILED: logging.WARNING,
    EventKind.UPDATE_ABANDONED: logging.WARNING,
    EventKind.UPDATE_FAILED: logging.ERROR,
    EventKind.RETRY_EXHAUSTED: logging.ERROR,
    EventKind.PROVIDER_DISABLED: logging.ERROR,
}


def format_event(event: CoreEvent) -> str:
    details = " ".join(f"{key}={value}" for key, value in event.data.items() if value is not None)
    prefix = f"[cycle {event.cycle}] " if event.cycle is not None else ""
    text = f"{prefix}{event.kind.value}"
    if event.message:
        text = f"{text}: {event.message}"
    if details:
        text = f"{text} ({details})"
    return text


class LoggingEventSink(EventSink):
    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def emit(self, event: CoreEvent) -> None:
        level = _LEVELS.get(event.kind, logging.INFO)
        if self._log.isEnabledFor(level):
            self._log.log(level, format_event(event))
