"""Append-only JSONL audit stream, one file per run."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from politrade.domain.events import CycleEvent, EventType

EVENTS_FILENAME = "events.jsonl"


class JsonlEventSink:
    """Writes cycle events to a JSONL file, creating parent directories."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.emitted = 0

    @classmethod
    def for_run(cls, events_dir: str | Path, run_id: str) -> JsonlEventSink:
        return cls(Path(events_dir) / run_id / EVENTS_FILENAME)

    def emit(self, event: CycleEvent) -> None:
        # Payload datetimes are written as strings.
        line = json.dumps(event.to_record(), sort_keys=True, default=str)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(f"{line}\n")
        self.emitted += 1


def load_events(
    path: str | Path,
    event_type: EventType | str | None = None,
) -> list[dict[str, Any]]:
    """Read a run's events, optionally keeping a single event type."""
    input_path = Path(path)
    if not input_path.exists():
        return []
    wanted = EventType(event_type).value if event_type is not None else None
    records: list[dict[str, Any]] = []
    for line in input_path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        record = json.loads(line)
        if wanted is None or record.get("event_type") == wanted:
            records.append(record)
    return records
