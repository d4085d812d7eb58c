"""Paper broker with persistent local state."""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from trade_guardian.broker.base import BrokerAPIError
from trade_guardian.schemas import BrokerTrade, Side


@dataclass(slots=True)
class _PaperPosition:
    id: str
    symbol: str
    side: Side
    volume: float
    open_price: float
    open_time: str
    close_price: float | None = None
    close_time: str | None = None
    profit: float = 0.0


@dataclass(slots=True)
class _PaperState:
    accounts: list[str] = field(default_factory=list)
    positions: dict[str, list[_PaperPosition]] = field(default_factory=dict)
    deals: dict[str, list[_PaperPosition]] = field(default_factory=dict)


class PaperBroker:
    """Simulated broker account for paper mode.

    Positions are opened by hand (``open_position``) and closed at their
    open price unless a mark is given, so realized profit is zero by default.
    """

    def __init__(self, state_dir: Path, *, reject_closes: bool = False) -> None:
        state_dir.mkdir(parents=True, exist_ok=True)
        self._state_file = state_dir / "paper_broker.json"
        self._reject_closes = reject_closes
        self._state = self._load_state()

    def list_open_positions(self, account_id: str) -> list[BrokerTrade]:
        self._require_account(account_id)
        return [_to_trade(p) for p in self._state.positions.get(account_id, [])]

    def list_historical_deals(
        self,
        account_id: str,
        from_time: datetime,
        to_time: datetime,
    ) -> list[BrokerTrade]:
        self._require_account(account_id)
        deals = [_to_trade(p) for p in self._state.deals.get(account_id, [])]
        return [d for d in deals if from_time <= (d.close_time or d.open_time) <= to_time]

    def close_position(self, account_id: str, position_id: str) -> bool:
        return self.close_at(account_id, position_id) is not None

    def create_and_deploy_account(self, login: str, password: str, server_name: str) -> str:
        account_id = f"paper-{login}"
        if account_id not in self._state.accounts:
            self._state.accounts.append(account_id)
            self._persist()
        return account_id

    def open_position(
        self,
        account_id: str,
        symbol: str,
        side: Side,
        volume: float,
        price: float,
        *,
        opened_at: datetime | None = None,
    ) -> BrokerTrade:
        """Open a simulated position."""
        self._require_account(account_id)
        if volume <= 0:
            raise ValueError("volume_must_be_positive")
        position = _PaperPosition(
            id=uuid.uuid4().hex[:12],
            symbol=symbol,
            side=side,
            volume=float(volume),
            open_price=float(price),
            open_time=(opened_at or datetime.now(timezone.utc)).isoformat(),
        )
        self._state.positions.setdefault(account_id, []).append(position)
        self._persist()
        return _to_trade(position)

    def close_at(
        self,
        account_id: str,
        position_id: str,
        *,
        price: float | None = None,
    ) -> BrokerTrade | None:
        """Close a position and move it to deal history. None when not closed."""
        self._require_account(account_id)
        if self._reject_closes:
            return None
        open_positions = self._state.positions.get(account_id, [])
        active = next((p for p in open_positions if p.id == position_id), None)
        if active is None:
            return None

        exit_price = active.open_price if price is None else float(price)
        direction = 1.0 if active.side == "buy" else -1.0
        active.close_price = exit_price
        active.close_time = datetime.now(timezone.utc).isoformat()
        active.profit = (exit_price - active.open_price) * active.volume * direction
        open_positions.remove(active)
        self._state.deals.setdefault(account_id, []).append(active)
        self._persist()
        return _to_trade(active)

    def _require_account(self, account_id: str) -> None:
        if account_id not in self._state.accounts:
            raise BrokerAPIError(f"unknown_account: {account_id}", status_code=404)

    def _load_state(self) -> _PaperState:
        if not self._state_file.exists():
            return _PaperState()

        raw = json.loads(self._state_file.read_text(encoding="utf-8"))
        return _PaperState(
            accounts=[str(a) for a in raw.get("accounts", [])],
            positions=_load_book(raw.get("positions", {})),
            deals=_load_book(raw.get("deals", {})),
        )

    def _persist(self) -> None:
        payload: dict[str, Any] = {
            "accounts": self._state.accounts,
            "positions": {k: [asdict(p) for p in v] for k, v in self._state.positions.items()},
            "deals": {k: [asdict(p) for p in v] for k, v in self._state.deals.items()},
        }
        serialized = json.dumps(payload, ensure_ascii=True, indent=2)
        self._state_file.write_text(serialized, encoding="utf-8")


def _load_book(raw: Any) -> dict[str, list[_PaperPosition]]:
    if not isinstance(raw, dict):
        return {}
    return {
        str(account): [_PaperPosition(**row) for row in rows if isinstance(row, dict)]
        for account, rows in raw.items()
    }


def _to_trade(position: _PaperPosition) -> BrokerTrade:
    return BrokerTrade(
        id=position.id,
        symbol=position.symbol,
        side=position.side,
        volume=position.volume,
        open_price=position.open_price,
        close_price=position.close_price,
        profit=position.profit,
        open_time=datetime.fromisoformat(position.open_time),
        close_time=datetime.fromisoformat(position.close_time) if position.close_time else None,
    )
