"""Structured events emitted by the core.

The core has no opinion on formatting or destination: it builds `CoreEvent`
values and hands them to an injected `EventSink`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventKind(str, Enum):
    CYCLE_STARTED = "cycle_started"
    CONSENSUS_REACHED = "consensus_reached"
    CONSENSUS_FAILED = "consensus_failed"
    UPDATE_SUCCEEDED = "update_succeeded"
    UPDATE_FAILED = "update_failed"
    UPDATE_ABANDONED = "update_abandoned"
    RETRY_EXHAUSTED = "retry_exhausted"
    PROVIDER_DISABLED = "provider_disabled"
    SHUTDOWN_INITIATED = "shutdown_initiated"
    STATE_CHANGED = "state_changed"


class CoreEvent(BaseModel):
    kind: EventKind
    message: str = Field(default="", description="Short human readable summary.")
    data: dict[str, Any] = Field(default_factory=dict, description="Structured payload.")
    cycle: int | None = Field(default=None, ge=0, description="Cycle number, when inside one.")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
