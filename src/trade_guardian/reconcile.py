"""One-way sync of broker positions and deals into the trade ledger."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from trade_guardian.broker.base import BrokerError, BrokerGateway
from trade_guardian.ledger.base import TradeLedger
from trade_guardian.schemas import BrokerTrade
from trade_guardian.types import SyncResult
from trade_guardian.utils.logging import get_logger


def merge_broker_trades(*sources: Iterable[BrokerTrade]) -> list[BrokerTrade]:
    """Deduplicate by broker id, later sources winning on non-null fields."""
    merged: dict[str, BrokerTrade] = {}
    for source in sources:
        for trade in source:
            previous = merged.get(trade.id)
            if previous is None:
                merged[trade.id] = trade
                continue
            overrides = {
                name: value
                for name, value in trade.model_dump().items()
                if value is not None
            }
            merged[trade.id] = previous.model_copy(update=overrides)
    return list(merged.values())


def reconcile(
    ledger: TradeLedger,
    user_id: str,
    account_id: str,
    positions: Iterable[BrokerTrade],
    deals: Iterable[BrokerTrade],
) -> int:
    """Upsert every broker item into the ledger and return how many rows changed.

    New rows start out compliant. Known rows only receive the broker-owned
    price, profit and close facts, so violation flags set by enforcement
    survive.
    """
    touched = 0
    for trade in merge_broker_trades(positions, deals):
        if ledger.upsert_trade(trade.to_record(user_id, account_id)):
            touched += 1
    return touched


def reconcile_snapshot(
    ledger: TradeLedger,
    broker: BrokerGateway,
    user_id: str,
    account_id: str,
    *,
    history_start: datetime,
    now: datetime,
) -> SyncResult:
    """Pull positions and deals from the broker and reconcile whatever arrived."""
    logger = get_logger("trade_guardian.reconcile")
    warnings: list[str] = []

    positions: list[BrokerTrade] = []
    positions_ok = True
    try:
        positions = broker.list_open_positions(account_id)
    except BrokerError as exc:
        positions_ok = False
        warnings.append("positions_fetch_failed")
        logger.warning("positions_fetch_failed", account_id=account_id, error=str(exc))

    deals: list[BrokerTrade] = []
    deals_ok = True
    try:
        deals = broker.list_historical_deals(account_id, history_start, now)
    except BrokerError as exc:
        deals_ok = False
        warnings.append("history_fetch_failed")
        logger.warning("history_fetch_failed", account_id=account_id, error=str(exc))

    if not positions_ok and not deals_ok:
        return SyncResult(status="broker_unavailable", warnings=warnings)

    synced = len(merge_broker_trades(positions, deals))
    written = reconcile(ledger, user_id, account_id, positions, deals)
    logger.info(
        "sync_completed",
        user_id=user_id,
        account_id=account_id,
        synced=synced,
        written=written,
        partial=bool(warnings),
    )
    return SyncResult(
        status="partial" if warnings else "ok",
        synced=synced,
        written=written,
        warnings=warnings,
    )
