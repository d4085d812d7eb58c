"""Shared result types for sync and enforcement runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

CloseAction = Literal["closed", "close_failed", "closed_unrecorded"]


@dataclass(slots=True)
class DailyStats:
    """Aggregates over today's ledger rows, recomputed every cycle."""

    trade_count: int = 0
    daily_loss: float = 0.0


@dataclass(slots=True)
class ViolationDetail:
    """One violating position and what was done about it."""

    trade_id: str
    symbol: str
    violations: list[str]
    action: CloseAction


@dataclass(slots=True)
class CycleResult:
    """Outcome of one enforcement cycle."""

    status: str
    checked: int = 0
    details: list[ViolationDetail] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    elapsed_ms: float = 0.0

    @property
    def violated(self) -> int:
        """Positions the broker confirmed as force-closed."""
        return sum(1 for d in self.details if d.action != "close_failed")


@dataclass(slots=True)
class SyncResult:
    """Outcome of one broker to ledger reconciliation."""

    status: str
    synced: int = 0
    written: int = 0
    warnings: list[str] = field(default_factory=list)
