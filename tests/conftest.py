from __future__ import annotations

from datetime import UTC, datetime, time
from pathlib import Path

import pytest

from trade_guardian.broker.base import BrokerAPIError
from trade_guardian.config import Settings
from trade_guardian.ledger.store import JsonTradeLedger
from trade_guardian.schemas import BrokerTrade, TradingPlan

NOW = datetime(2025, 3, 12, 12, 0, tzinfo=UTC)


def make_trade(
    trade_id: str,
    symbol: str = "EURUSD",
    *,
    opened_at: datetime = NOW.replace(hour=10),
    profit: float | None = 0.0,
    close_time: datetime | None = None,
    close_price: float | None = None,
) -> BrokerTrade:
    return BrokerTrade(
        id=trade_id,
        symbol=symbol,
        side="buy",
        volume=0.1,
        open_price=1.1,
        close_price=close_price,
        profit=profit,
        open_time=opened_at,
        close_time=close_time,
    )


def make_plan(user_id: str = "u1", **overrides: object) -> TradingPlan:
    values: dict[str, object] = {
        "user_id": user_id,
        "max_trades_per_day": 5,
        "allowed_symbols": ["EURUSD"],
        "session_start": time(9, 0),
        "session_end": time(17, 0),
        "max_daily_loss_percent": 5.0,
    }
    values.update(overrides)
    return TradingPlan(**values)  # type: ignore[arg-type]


class FakeBroker:
    """In-memory gateway with scriptable failures."""

    def __init__(self, positions: list[BrokerTrade] | None = None) -> None:
        self.positions = list(positions or [])
        self.deals: list[BrokerTrade] = []
        self.reject: set[str] = set()
        self.fail_positions = False
        self.fail_deals = False
        self.close_calls: list[str] = []

    def list_open_positions(self, account_id: str) -> list[BrokerTrade]:
        if self.fail_positions:
            raise BrokerAPIError("timeout")
        return list(self.positions)

    def list_historical_deals(
        self, account_id: str, from_time: datetime, to_time: datetime
    ) -> list[BrokerTrade]:
        if self.fail_deals:
            raise BrokerAPIError("503: unavailable", status_code=503)
        return list(self.deals)

    def close_position(self, account_id: str, position_id: str) -> bool:
        self.close_calls.append(position_id)
        if position_id in self.reject:
            return False
        self.positions = [p for p in self.positions if p.id != position_id]
        return True

    def create_and_deploy_account(self, login: str, password: str, server_name: str) -> str:
        return f"acc-{login}"


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        ledger_dir=tmp_path / "ledger",
        journal_dir=tmp_path / "journal",
        monitor_interval_sec=5,
    )


@pytest.fixture()
def ledger(tmp_path: Path) -> JsonTradeLedger:
    return JsonTradeLedger(tmp_path / "ledger")
