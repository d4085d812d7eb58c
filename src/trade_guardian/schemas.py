"""Validated models for plans, ledger rows and broker payloads."""

from __future__ import annotations

from datetime import datetime, time, timezone
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

Side = Literal["buy", "sell"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class TradingPlan(BaseModel):
    """Enforced limits for one user. Only one plan per user may be active."""

    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(min_length=1)
    max_trades_per_day: int = Field(default=5, gt=0)
    max_risk_percent: float = Field(default=2.0, gt=0.0, le=100.0)
    allowed_symbols: list[str] = Field(default_factory=list)
    session_start: time = time(9, 0)
    session_end: time = time(17, 0)
    max_daily_loss_percent: float = Field(default=5.0, gt=0.0)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("allowed_symbols")
    @classmethod
    def strip_symbols(cls, v: list[str]) -> list[str]:
        """Drop blanks and duplicates while keeping the declared order."""
        seen: list[str] = []
        for symbol in v:
            cleaned = symbol.strip()
            if cleaned and cleaned not in seen:
                seen.append(cleaned)
        return seen


class TradeRecord(BaseModel):
    """One ledger row per broker trade identifier. Never deleted."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    user_id: str
    account_id: str = ""
    trade_id: str
    symbol: str
    side: Side
    volume: float = Field(ge=0.0)
    open_price: float | None = None
    close_price: float | None = None
    profit: float | None = None
    opened_at: datetime
    closed_at: datetime | None = None
    is_open: bool = True
    follows_rules: bool = True
    violations: list[str] = Field(default_factory=list)
    auto_closed: bool = False
    auto_close_reason: str | None = None
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("opened_at", "closed_at", "updated_at")
    @classmethod
    def parse_aware(cls, v: datetime | None) -> datetime | None:
        return _as_aware(v)


class BrokerAccount(BaseModel):
    """A provisioned broker account bound to one user."""

    model_config = ConfigDict(extra="forbid")

    user_id: str
    account_id: str
    login: str = ""
    server_name: str = ""
    is_connected: bool = True
    connected_at: datetime = Field(default_factory=utc_now)


class BrokerTrade(BaseModel):
    """Normalized broker position or deal.

    Accepts MetaApi field names; positions report ``openPrice``/``time`` while
    history deals report ``price``/``time``.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    symbol: str = Field(min_length=1)
    side: Side = Field(validation_alias=AliasChoices("side", "type"))
    volume: float = Field(default=0.0, ge=0.0)
    open_price: float | None = Field(
        default=None,
        validation_alias=AliasChoices("open_price", "openPrice", "price"),
    )
    close_price: float | None = Field(
        default=None,
        validation_alias=AliasChoices("close_price", "closePrice"),
    )
    profit: float | None = None
    open_time: datetime = Field(validation_alias=AliasChoices("open_time", "openTime", "time"))
    close_time: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("close_time", "closeTime"),
    )

    @model_validator(mode="before")
    @classmethod
    def coerce_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("id") is not None:
            data = {**data, "id": str(data["id"])}
        return data

    @field_validator("side", mode="before")
    @classmethod
    def parse_side(cls, v: Any) -> str:
        """Map vendor enums such as POSITION_TYPE_BUY or DEAL_TYPE_SELL."""
        text = str(v).strip().upper()
        if text.endswith("BUY"):
            return "buy"
        if text.endswith("SELL"):
            return "sell"
        raise ValueError(f"unsupported_side: {v}")

    @field_validator("open_time", "close_time")
    @classmethod
    def parse_aware(cls, v: datetime | None) -> datetime | None:
        return _as_aware(v)

    @property
    def is_open(self) -> bool:
        return self.close_time is None

    def to_record(self, user_id: str, account_id: str) -> TradeRecord:
        """Build a fresh ledger row. Compliance is decided later by enforcement."""
        return TradeRecord(
            user_id=user_id,
            account_id=account_id,
            trade_id=self.id,
            symbol=self.symbol,
            side=self.side,
            volume=self.volume,
            open_price=self.open_price,
            close_price=self.close_price,
            profit=self.profit if self.profit is not None else 0.0,
            opened_at=self.open_time,
            closed_at=self.close_time,
            is_open=self.is_open,
            follows_rules=True,
        )
