"""Enforcement cycle: evaluate live positions and force-close violators."""

from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from time import perf_counter

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from trade_guardian.broker.base import BrokerError, BrokerGateway
from trade_guardian.journal.store import JournalStore
from trade_guardian.ledger.base import LedgerError, TradeLedger
from trade_guardian.risk.rules import (
    Violation,
    compute_daily_stats,
    day_bounds,
    evaluate,
    violation_reason,
)
from trade_guardian.schemas import BrokerTrade
from trade_guardian.types import CycleResult, ViolationDetail
from trade_guardian.utils.logging import get_logger, log_close_action, log_violation

_EVENT_FOR_ACTION = {
    "closed": "violation",
    "close_failed": "close_failed",
    "closed_unrecorded": "ledger_error",
}


def run_cycle(
    ledger: TradeLedger,
    broker: BrokerGateway,
    user_id: str,
    account_id: str,
    now: datetime,
    *,
    tz: tzinfo = timezone.utc,
    journal: JournalStore | None = None,
) -> CycleResult:
    """Run one enforcement pass for a single account.

    The ledger is only touched for a position after the broker confirmed its
    close, so a row never claims a rule close the broker did not perform.
    """
    logger = get_logger("trade_guardian.enforcement")
    started = perf_counter()
    result = CycleResult(status="unknown")
    _journal(
        journal,
        result,
        "cycle_start",
        {"user_id": user_id, "account_id": account_id, "now": now},
    )

    if not account_id:
        return _finish_cycle(result, journal, started, status="no_account")

    try:
        plan = ledger.get_active_plan(user_id)
    except LedgerError as exc:
        logger.error("plan_load_failed", user_id=user_id, error=str(exc))
        _journal(journal, result, "error", {"stage": "plan", "error": str(exc)})
        return _finish_cycle(result, journal, started, status="ledger_unavailable")
    if plan is None:
        logger.info("no_active_plan", user_id=user_id)
        return _finish_cycle(result, journal, started, status="no_active_plan")

    day_start, day_end = day_bounds(now, tz)
    try:
        todays = ledger.get_trades_since(user_id, day_start, day_end)
    except LedgerError as exc:
        logger.error("daily_stats_failed", user_id=user_id, error=str(exc))
        _journal(journal, result, "error", {"stage": "daily_stats", "error": str(exc)})
        return _finish_cycle(result, journal, started, status="ledger_unavailable")
    daily_stats = compute_daily_stats(todays, now, tz)

    try:
        positions = broker.list_open_positions(account_id)
    except BrokerError as exc:
        logger.warning("positions_fetch_failed", account_id=account_id, error=str(exc))
        result.warnings.append("positions_fetch_failed")
        _journal(journal, result, "error", {"stage": "positions", "error": str(exc)})
        return _finish_cycle(result, journal, started, status="broker_unavailable")

    result.checked = len(positions)
    for position in positions:
        violations = evaluate(position, plan, daily_stats, now, tz)
        if not violations:
            continue
        names = [v.value for v in violations]
        log_violation(
            logger,
            user_id=user_id,
            trade_id=position.id,
            symbol=position.symbol,
            violations=names,
        )
        detail = _enforce(ledger, broker, user_id, account_id, position, violations, now, result)
        result.details.append(detail)
        log_close_action(logger, account_id=account_id, trade_id=position.id, action=detail.action)
        _journal(
            journal,
            result,
            _EVENT_FOR_ACTION[detail.action],
            {
                "user_id": user_id,
                "trade_id": detail.trade_id,
                "symbol": detail.symbol,
                "violations": detail.violations,
                "action": detail.action,
            },
        )

    return _finish_cycle(result, journal, started, status="ok")


def _enforce(
    ledger: TradeLedger,
    broker: BrokerGateway,
    user_id: str,
    account_id: str,
    position: BrokerTrade,
    violations: list[Violation],
    now: datetime,
    result: CycleResult,
) -> ViolationDetail:
    names = [v.value for v in violations]
    detail = ViolationDetail(
        trade_id=position.id,
        symbol=position.symbol,
        violations=names,
        action="close_failed",
    )

    try:
        closed = broker.close_position(account_id, position.id)
    except BrokerError as exc:
        get_logger("trade_guardian.enforcement").warning(
            "close_request_failed", trade_id=position.id, error=str(exc)
        )
        closed = False
    if not closed:
        # Left open and unflagged; the next cycle evaluates it again.
        return detail

    try:
        _record_close(ledger, user_id, account_id, position, names, now)
    except LedgerError as exc:
        get_logger("trade_guardian.enforcement").error(
            "ledger_update_failed", trade_id=position.id, error=str(exc)
        )
        result.warnings.append(f"ledger_update_failed:{position.id}")
        detail.action = "closed_unrecorded"
        return detail

    detail.action = "closed"
    return detail


@retry(
    retry=retry_if_exception_type(LedgerError),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    stop=stop_after_attempt(3),
    reraise=True,
)
def _record_close(
    ledger: TradeLedger,
    user_id: str,
    account_id: str,
    position: BrokerTrade,
    names: list[str],
    now: datetime,
) -> None:
    # Positions that were never synced still need an audit row.
    if ledger.get_trade(user_id, position.id) is None:
        ledger.upsert_trade(position.to_record(user_id, account_id))
    reason = violation_reason(Violation(n) for n in names)
    if not ledger.mark_violation(user_id, position.id, names, reason, now):
        raise LedgerError(f"trade_not_found: {position.id}")


def _journal(
    journal: JournalStore | None,
    result: CycleResult,
    event_type: str,
    payload: dict[str, object],
) -> None:
    if journal is None:
        return
    try:
        journal.append(event_type, payload)
    except OSError as exc:
        get_logger("trade_guardian.enforcement").error(
            "journal_write_failed", event_type=event_type, error=str(exc)
        )
        result.warnings.append(f"journal_write_failed:{event_type}")


def _finish_cycle(
    result: CycleResult,
    journal: JournalStore | None,
    started: float,
    *,
    status: str,
) -> CycleResult:
    result.status = status
    result.elapsed_ms = (perf_counter() - started) * 1000
    _journal(
        journal,
        result,
        "cycle_end",
        {
            "status": status,
            "checked": result.checked,
            "violated": result.violated,
            "elapsed_ms": result.elapsed_ms,
        },
    )
    return result
