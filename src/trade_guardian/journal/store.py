"""JSONL audit journal for sync and enforcement events."""

from __future__ import annotations

import json
import threading
from collections import deque
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Iterable

EVENT_TYPES = frozenset(
    {
        "cycle_start",
        "sync",
        "violation",
        "close_failed",
        "ledger_error",
        "cycle_end",
        "error",
    }
)


class JournalStore:
    """Append-only JSONL event store, one file per UTC day."""

    def __init__(self, journal_dir: Path) -> None:
        self._journal_dir = journal_dir
        self._journal_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def append(self, event_type: str, payload: dict[str, Any]) -> None:
        """Write one event. Raises ``OSError`` when the file cannot be written."""
        if event_type not in EVENT_TYPES:
            raise ValueError(f"unsupported_event_type: {event_type}")
        now = datetime.now(timezone.utc)
        line = json.dumps(
            {"timestamp": now.isoformat(), "event_type": event_type, "payload": payload},
            ensure_ascii=True,
            default=str,
        )
        with self._lock, self._day_file(now.date()).open("a", encoding="utf-8") as f:
            f.write(line + "\n")

    def recent_events(
        self,
        limit: int,
        event_types: Iterable[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Return up to ``limit`` newest events, oldest first.

        Lines that do not parse, such as a write cut short by a full disk,
        are skipped.
        """
        if limit <= 0:
            return []
        wanted = set(event_types) if event_types else None
        picked: deque[dict[str, Any]] = deque()
        for path in sorted(self._journal_dir.glob("*.jsonl"), reverse=True):
            for raw in reversed(path.read_text(encoding="utf-8").splitlines()):
                event = _parse_line(raw)
                if event is None:
                    continue
                if wanted is not None and event.get("event_type") not in wanted:
                    continue
                picked.appendleft(event)
                if len(picked) >= limit:
                    return list(picked)
        return list(picked)

    def _day_file(self, day: date) -> Path:
        return self._journal_dir / f"{day.isoformat()}.jsonl"


def _parse_line(raw: str) -> dict[str, Any] | None:
    if not raw.strip():
        return None
    try:
        event = json.loads(raw)
    except ValueError:
        return None
    return event if isinstance(event, dict) else None
