"""JSON file trade ledger."""

from __future__ import annotations

import json
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Sequence

from pydantic import ValidationError

from trade_guardian.ledger.base import LedgerError
from trade_guardian.schemas import BrokerAccount, TradeRecord, TradingPlan, utc_now

# Fields the broker is authoritative for on an existing record.
_BROKER_FIELDS = ("close_price", "profit", "closed_at", "is_open")


class JsonTradeLedger:
    """Single-file ledger holding plans, accounts and trades for every user.

    All access goes through one re-entrant lock and the whole document is
    rewritten atomically on each change, so a reader in the same process
    always sees the previous write.
    """

    def __init__(self, ledger_dir: Path) -> None:
        self._file = ledger_dir / "ledger.json"
        self._lock = threading.RLock()
        try:
            ledger_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise LedgerError(f"ledger_dir_unavailable: {exc}") from exc

    # ---- plans -----------------------------------------------------------

    def get_active_plan(self, user_id: str) -> TradingPlan | None:
        active = [p for p in self.list_plans(user_id) if p.is_active]
        return active[-1] if active else None

    def save_plan(self, plan: TradingPlan) -> TradingPlan:
        with self._lock:
            doc = self._read()
            plans = doc["plans"].setdefault(plan.user_id, [])
            if plan.is_active:
                for row in plans:
                    row["is_active"] = False
            plans.append(plan.model_dump(mode="json"))
            self._write(doc)
        return plan

    def list_plans(self, user_id: str) -> list[TradingPlan]:
        with self._lock:
            rows = self._read()["plans"].get(user_id, [])
            return [self._load(TradingPlan, row) for row in rows]

    # ---- accounts --------------------------------------------------------

    def save_account(self, account: BrokerAccount) -> None:
        with self._lock:
            doc = self._read()
            doc["accounts"][account.user_id] = account.model_dump(mode="json")
            self._write(doc)

    def get_account(self, user_id: str) -> BrokerAccount | None:
        with self._lock:
            row = self._read()["accounts"].get(user_id)
            return self._load(BrokerAccount, row) if row else None

    # ---- trades ----------------------------------------------------------

    def get_trade(self, user_id: str, trade_id: str) -> TradeRecord | None:
        with self._lock:
            row = self._read()["trades"].get(user_id, {}).get(trade_id)
            return self._load(TradeRecord, row) if row else None

    def list_trades(self, user_id: str) -> list[TradeRecord]:
        with self._lock:
            rows = self._read()["trades"].get(user_id, {}).values()
            records = [self._load(TradeRecord, row) for row in rows]
        return sorted(records, key=lambda r: r.opened_at, reverse=True)

    def get_trades_since(
        self,
        user_id: str,
        day_start: datetime,
        day_end: datetime,
    ) -> list[TradeRecord]:
        return [r for r in self.list_trades(user_id) if day_start <= r.opened_at < day_end]

    def upsert_trade(self, record: TradeRecord) -> bool:
        with self._lock:
            doc = self._read()
            trades = doc["trades"].setdefault(record.user_id, {})
            existing = trades.get(record.trade_id)
            if existing is None:
                trades[record.trade_id] = record.model_dump(mode="json")
                self._write(doc)
                return True

            current = self._load(TradeRecord, existing)
            changes = {
                name: getattr(record, name)
                for name in _BROKER_FIELDS
                if getattr(current, name) != getattr(record, name)
            }
            if not changes:
                return False
            updated = current.model_copy(update={**changes, "updated_at": utc_now()})
            trades[record.trade_id] = updated.model_dump(mode="json")
            self._write(doc)
            return True

    def mark_violation(
        self,
        user_id: str,
        trade_id: str,
        violations: Sequence[str],
        reason: str,
        closed_at: datetime,
    ) -> bool:
        with self._lock:
            doc = self._read()
            row = doc["trades"].get(user_id, {}).get(trade_id)
            if row is None:
                return False
            current = self._load(TradeRecord, row)
            updated = current.model_copy(
                update={
                    "is_open": False,
                    "follows_rules": False,
                    "violations": list(violations),
                    "auto_closed": True,
                    "auto_close_reason": reason,
                    "closed_at": closed_at,
                    "updated_at": utc_now(),
                }
            )
            doc["trades"][user_id][trade_id] = updated.model_dump(mode="json")
            self._write(doc)
            return True

    # ---- storage ---------------------------------------------------------

    def _read(self) -> dict[str, Any]:
        if not self._file.exists():
            return {"plans": {}, "accounts": {}, "trades": {}}
        try:
            raw = json.loads(self._file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise LedgerError(f"ledger_read_failed: {exc}") from exc
        for key in ("plans", "accounts", "trades"):
            raw.setdefault(key, {})
        return raw

    def _write(self, doc: dict[str, Any]) -> None:
        tmp = self._file.with_suffix(".json.tmp")
        try:
            tmp.write_text(json.dumps(doc, ensure_ascii=True, indent=2), encoding="utf-8")
            os.replace(tmp, self._file)
        except OSError as exc:
            raise LedgerError(f"ledger_write_failed: {exc}") from exc

    @staticmethod
    def _load(model: Any, row: dict[str, Any]) -> Any:
        try:
            return model.model_validate(row)
        except ValidationError as exc:
            raise LedgerError(f"corrupt_ledger_row: {exc.errors()[0]['msg']}") from exc
