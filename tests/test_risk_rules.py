from __future__ import annotations

from datetime import UTC, datetime, time, timedelta
from zoneinfo import ZoneInfo

from conftest import NOW, make_plan, make_trade

from trade_guardian.risk.rules import (
    Violation,
    compute_daily_stats,
    day_bounds,
    evaluate,
    violation_reason,
)
from trade_guardian.types import DailyStats


def test_symbol_not_allowed_only() -> None:
    violations = evaluate(make_trade("1", "GBPUSD"), make_plan(), DailyStats(), NOW)
    assert [v.value for v in violations] == ["Symbol not allowed"]


def test_compliant_position_has_no_violations() -> None:
    assert evaluate(make_trade("1"), make_plan(), DailyStats(), NOW) == []


def test_trade_limit_counts_already_recorded_trades() -> None:
    plan = make_plan()
    assert Violation.DAILY_TRADE_LIMIT in evaluate(
        make_trade("1"), plan, DailyStats(trade_count=5), NOW
    )
    assert Violation.DAILY_TRADE_LIMIT not in evaluate(
        make_trade("1"), plan, DailyStats(trade_count=4), NOW
    )


def test_daily_loss_limit() -> None:
    violations = evaluate(make_trade("1"), make_plan(), DailyStats(daily_loss=-6.0), NOW)
    assert violations == [Violation.DAILY_LOSS_LIMIT]
    boundary = evaluate(make_trade("1"), make_plan(), DailyStats(daily_loss=-5.0), NOW)
    assert boundary == [Violation.DAILY_LOSS_LIMIT]


def test_outside_session_regardless_of_symbol() -> None:
    late = NOW.replace(hour=20)
    for symbol in ("EURUSD", "GBPUSD"):
        violations = evaluate(make_trade("1", symbol), make_plan(), DailyStats(), late)
        assert violations[0] == Violation.OUTSIDE_SESSION


def test_session_bounds_are_inclusive() -> None:
    plan = make_plan()
    assert evaluate(make_trade("1"), plan, DailyStats(), NOW.replace(hour=17, minute=0)) == []
    assert evaluate(make_trade("1"), plan, DailyStats(), NOW.replace(hour=9, minute=0)) == []
    after = NOW.replace(hour=17, minute=0, second=1)
    assert evaluate(make_trade("1"), plan, DailyStats(), after) == [Violation.OUTSIDE_SESSION]


def test_end_before_start_does_not_wrap_midnight() -> None:
    plan = make_plan(session_start=time(22, 0), session_end=time(2, 0))
    for hour in (1, 12, 23):
        violations = evaluate(make_trade("1"), plan, DailyStats(), NOW.replace(hour=hour))
        assert Violation.OUTSIDE_SESSION in violations


def test_session_uses_given_timezone() -> None:
    tokyo = ZoneInfo("Asia/Tokyo")
    # 12:00 UTC is 21:00 in Tokyo.
    assert evaluate(make_trade("1"), make_plan(), DailyStats(), NOW, tz=tokyo) == [
        Violation.OUTSIDE_SESSION
    ]


def test_all_checks_fire_in_declaration_order() -> None:
    violations = evaluate(
        make_trade("1", "XAUUSD"),
        make_plan(),
        DailyStats(trade_count=9, daily_loss=-50.0),
        NOW.replace(hour=3),
    )
    assert violations == [
        Violation.OUTSIDE_SESSION,
        Violation.SYMBOL_NOT_ALLOWED,
        Violation.DAILY_TRADE_LIMIT,
        Violation.DAILY_LOSS_LIMIT,
    ]
    assert violations == evaluate(
        make_trade("1", "XAUUSD"),
        make_plan(),
        DailyStats(trade_count=9, daily_loss=-50.0),
        NOW.replace(hour=3),
    )


def test_symbol_match_is_case_sensitive_and_empty_list_allows_all() -> None:
    assert Violation.SYMBOL_NOT_ALLOWED in evaluate(
        make_trade("1", "eurusd"), make_plan(), DailyStats(), NOW
    )
    assert evaluate(make_trade("1", "XAUUSD"), make_plan(allowed_symbols=[]), DailyStats(), NOW) == []


def test_naive_now_is_read_in_session_timezone() -> None:
    tokyo = ZoneInfo("Asia/Tokyo")
    noon = datetime(2025, 3, 12, 12, 0)
    assert evaluate(make_trade("1"), make_plan(), DailyStats(), noon, tz=tokyo) == []
    late = datetime(2025, 3, 12, 20, 0)
    assert evaluate(make_trade("1"), make_plan(), DailyStats(), late) == [
        Violation.OUTSIDE_SESSION
    ]


def test_daily_stats_only_counts_today() -> None:
    from trade_guardian.schemas import TradeRecord

    def record(trade_id: str, opened_at: datetime, profit: float | None) -> TradeRecord:
        return make_trade(trade_id, opened_at=opened_at, profit=profit).to_record("u1", "acc")

    records = [
        record("a", NOW.replace(hour=0), -2.5),
        record("b", NOW.replace(hour=11), None),
        record("c", NOW - timedelta(days=1), -100.0),
        record("d", NOW.replace(hour=0) + timedelta(days=1), -100.0),
    ]
    stats = compute_daily_stats(records, NOW)
    assert stats.trade_count == 2
    assert stats.daily_loss == -2.5


def test_day_bounds_in_timezone() -> None:
    start, end = day_bounds(NOW, ZoneInfo("America/New_York"))
    assert start.hour == 0
    assert start.date().isoformat() == "2025-03-12"
    assert end - start == timedelta(hours=24)
    assert start <= NOW < end
    assert start.astimezone(UTC).hour == 4


def test_violation_reason_text() -> None:
    reason = violation_reason([Violation.OUTSIDE_SESSION, Violation.SYMBOL_NOT_ALLOWED])
    assert reason == "Rule violation: Outside trading session, Symbol not allowed"
