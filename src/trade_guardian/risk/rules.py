"""Trading plan rules evaluated against live positions."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Iterable

from trade_guardian.schemas import BrokerTrade, TradeRecord, TradingPlan
from trade_guardian.types import DailyStats


class Violation(str, Enum):
    """Named rule breaches, in check order."""

    OUTSIDE_SESSION = "Outside trading session"
    SYMBOL_NOT_ALLOWED = "Symbol not allowed"
    DAILY_TRADE_LIMIT = "Daily trade limit exceeded"
    DAILY_LOSS_LIMIT = "Daily loss limit exceeded"


def evaluate(
    position: BrokerTrade,
    plan: TradingPlan,
    daily_stats: DailyStats,
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> list[Violation]:
    """Return the rules ``position`` breaks at ``now``.

    Session bounds are wall-clock times in ``tz``. An end earlier than the
    start does not wrap past midnight, so every instant is outside it.
    A naive ``now`` is read as wall-clock time in ``tz``.

    The trade-count check looks at trades already recorded today and does
    not add the position under evaluation.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=tz)

    violations: list[Violation] = []

    local_time = now.astimezone(tz).time()
    if local_time < plan.session_start or local_time > plan.session_end:
        violations.append(Violation.OUTSIDE_SESSION)

    if plan.allowed_symbols and position.symbol not in plan.allowed_symbols:
        violations.append(Violation.SYMBOL_NOT_ALLOWED)

    if daily_stats.trade_count >= plan.max_trades_per_day:
        violations.append(Violation.DAILY_TRADE_LIMIT)

    # Summed profit is compared against the percent figure as-is.
    if daily_stats.daily_loss <= -plan.max_daily_loss_percent:
        violations.append(Violation.DAILY_LOSS_LIMIT)

    return violations


def day_bounds(now: datetime, tz: tzinfo = timezone.utc) -> tuple[datetime, datetime]:
    """Start (inclusive) and end (exclusive) of the calendar day holding ``now``."""
    local = now.astimezone(tz)
    start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    # Rebuild from the date so DST days get their real length.
    end_date = start.date() + timedelta(days=1)
    end = datetime(end_date.year, end_date.month, end_date.day, tzinfo=tz)
    return start, end


def compute_daily_stats(
    records: Iterable[TradeRecord],
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> DailyStats:
    """Aggregate trade count and summed profit for records opened today."""
    start, end = day_bounds(now, tz)
    stats = DailyStats()
    for record in records:
        if not start <= record.opened_at < end:
            continue
        stats.trade_count += 1
        stats.daily_loss += record.profit or 0.0
    return stats


def violation_reason(violations: Iterable[Violation]) -> str:
    """Audit text stored on auto-closed ledger rows."""
    return "Rule violation: " + ", ".join(v.value for v in violations)
