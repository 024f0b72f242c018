"""Audit events written once per cycle step."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from .models import TradingMode


class EventType(StrEnum):
    RUN_STARTED = "run_started"
    BLEND_SUMMARY = "blend_summary"
    ORDER_UPDATE = "order_update"
    REBALANCE_SUMMARY = "rebalance_summary"
    ERROR = "error"


@dataclass(frozen=True)
class CycleEvent:
    """One line of a run's audit stream."""

    run_id: str
    mode: TradingMode
    event_type: EventType
    payload: dict[str, Any] = field(default_factory=dict)
    ts: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def to_record(self) -> dict[str, Any]:
        return {
            "ts": self.ts.isoformat(),
            "run_id": self.run_id,
            "mode": self.mode.value,
            "event_type": self.event_type.value,
            "payload": self.payload,
        }
