"""Trade ledger interface."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, Sequence

from trade_guardian.schemas import BrokerAccount, TradeRecord, TradingPlan


class LedgerError(Exception):
    """Raised when the ledger cannot be read or written."""


class TradeLedger(Protocol):
    """Durable store of plans, accounts and trade records."""

    def get_active_plan(self, user_id: str) -> TradingPlan | None:
        """Return the user's active plan, if any."""

    def save_plan(self, plan: TradingPlan) -> TradingPlan:
        """Store a plan. An active plan deactivates the user's other plans."""

    def list_plans(self, user_id: str) -> list[TradingPlan]:
        """All stored plans for a user, oldest first."""

    def save_account(self, account: BrokerAccount) -> None:
        """Bind a broker account to its user, replacing any previous one."""

    def get_account(self, user_id: str) -> BrokerAccount | None:
        """The user's broker account, if connected."""

    def get_trade(self, user_id: str, trade_id: str) -> TradeRecord | None:
        """Look up one record by broker identifier."""

    def list_trades(self, user_id: str) -> list[TradeRecord]:
        """All records for a user, newest first."""

    def get_trades_since(
        self,
        user_id: str,
        day_start: datetime,
        day_end: datetime,
    ) -> list[TradeRecord]:
        """Records whose ``opened_at`` is in ``[day_start, day_end)``."""

    def upsert_trade(self, record: TradeRecord) -> bool:
        """Insert an unseen record or update the broker-owned fields of a known one.

        Returns True when anything was written.
        """

    def mark_violation(
        self,
        user_id: str,
        trade_id: str,
        violations: Sequence[str],
        reason: str,
        closed_at: datetime,
    ) -> bool:
        """Flag a record as force-closed. False when the record does not exist."""
