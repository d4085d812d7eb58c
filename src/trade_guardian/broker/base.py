"""Broker gateway interface used by the reconciler and enforcement cycle."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Protocol

from pydantic import ValidationError

from trade_guardian.schemas import BrokerTrade
from trade_guardian.utils.logging import get_logger


class BrokerError(Exception):
    """Base broker gateway error."""


class BrokerAPIError(BrokerError):
    """Raised when a broker request fails in transport or with an error status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_transient(self) -> bool:
        """Timeouts, connection failures and 5xx/429 responses."""
        return self.status_code is None or self.status_code >= 500 or self.status_code == 429


class BrokerGateway(Protocol):
    """Capabilities the engine needs from a broker connection."""

    def list_open_positions(self, account_id: str) -> list[BrokerTrade]:
        """Return currently open positions."""

    def list_historical_deals(
        self,
        account_id: str,
        from_time: datetime,
        to_time: datetime,
    ) -> list[BrokerTrade]:
        """Return deals executed within ``[from_time, to_time]``."""

    def close_position(self, account_id: str, position_id: str) -> bool:
        """Request a close. True when the broker accepted it."""

    def create_and_deploy_account(self, login: str, password: str, server_name: str) -> str:
        """Provision an account and return its broker-side identifier."""


def parse_broker_trades(rows: Iterable[dict[str, Any]], *, source: str) -> list[BrokerTrade]:
    """Validate raw payload rows, skipping the ones that are not trades."""
    logger = get_logger("trade_guardian.broker")
    trades: list[BrokerTrade] = []
    for row in rows:
        try:
            trades.append(BrokerTrade.model_validate(row))
        except ValidationError as exc:
            logger.debug(
                "broker_row_skipped",
                source=source,
                row_id=row.get("id") if isinstance(row, dict) else None,
                error=exc.errors()[0]["msg"],
            )
    return trades
