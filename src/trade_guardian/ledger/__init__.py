"""Trade ledger exports."""

from trade_guardian.ledger.base import LedgerError, TradeLedger
from trade_guardian.ledger.store import JsonTradeLedger

__all__ = [
    "JsonTradeLedger",
    "LedgerError",
    "TradeLedger",
]
