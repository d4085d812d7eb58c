from __future__ import annotations

from pathlib import Path

import pytest

from trade_guardian.journal.store import JournalStore


def test_recent_events_are_oldest_first_and_limited(tmp_path: Path) -> None:
    journal = JournalStore(tmp_path)
    for n in range(4):
        journal.append("sync", {"n": n})

    assert [e["payload"]["n"] for e in journal.recent_events(2)] == [2, 3]
    assert journal.recent_events(0) == []


def test_recent_events_filter_by_type(tmp_path: Path) -> None:
    journal = JournalStore(tmp_path)
    journal.append("cycle_start", {})
    journal.append("violation", {"trade_id": "p1"})
    journal.append("cycle_end", {"status": "ok"})

    events = journal.recent_events(10, ["violation"])
    assert [e["payload"] for e in events] == [{"trade_id": "p1"}]


def test_torn_and_older_lines(tmp_path: Path) -> None:
    (tmp_path / "2025-03-11.jsonl").write_text(
        '{"timestamp": "t0", "event_type": "sync", "payload": {"day": 11}}\n',
        encoding="utf-8",
    )
    (tmp_path / "2025-03-12.jsonl").write_text(
        '{"timestamp": "t1", "event_type": "sync", "payload": {"day": 12}}\n{"timestamp": "t2", "ev',
        encoding="utf-8",
    )

    events = JournalStore(tmp_path).recent_events(5)
    assert [e["payload"]["day"] for e in events] == [11, 12]


def test_unknown_event_type_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        JournalStore(tmp_path).append("order", {})
