"""Engine entry points: sync, monitor and scheduled monitoring."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator

from trade_guardian.broker.base import BrokerGateway
from trade_guardian.config import Settings
from trade_guardian.enforcement import run_cycle
from trade_guardian.journal.store import JournalStore
from trade_guardian.ledger.base import LedgerError, TradeLedger
from trade_guardian.reconcile import reconcile_snapshot
from trade_guardian.scheduler import MonitorScheduler
from trade_guardian.schemas import BrokerAccount
from trade_guardian.types import CycleResult, SyncResult
from trade_guardian.utils.logging import get_logger


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Engine:
    """Reconciliation and enforcement for one process.

    At most one sync or cycle runs per ``(user_id, account_id)`` at a time.
    Direct calls wait their turn; scheduled ticks skip when the account is
    busy.
    """

    def __init__(
        self,
        settings: Settings,
        ledger: TradeLedger,
        broker: BrokerGateway,
        *,
        journal: JournalStore | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._settings = settings
        self._ledger = ledger
        self._broker = broker
        self._journal = journal
        self._clock = clock
        self._logger = get_logger("trade_guardian.engine")
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._scheduler: MonitorScheduler | None = None

    @property
    def scheduler(self) -> MonitorScheduler | None:
        return self._scheduler

    def connect_account(
        self,
        user_id: str,
        login: str,
        password: str,
        server_name: str,
    ) -> BrokerAccount:
        """Provision a broker account and bind it to the user."""
        account_id = self._broker.create_and_deploy_account(login, password, server_name)
        account = BrokerAccount(
            user_id=user_id,
            account_id=account_id,
            login=login,
            server_name=server_name,
        )
        self._ledger.save_account(account)
        self._logger.info("account_connected", user_id=user_id, account_id=account_id)
        return account

    def sync(self, user_id: str, account_id: str) -> SyncResult:
        """Reconcile broker state into the ledger."""
        if not account_id:
            return SyncResult(status="no_account")
        with self._account_lock(user_id, account_id, blocking=True):
            return self._sync_locked(user_id, account_id)

    def monitor(self, user_id: str, account_id: str) -> CycleResult:
        """Reconcile then enforce, as one unit."""
        if not account_id:
            return run_cycle(
                self._ledger,
                self._broker,
                user_id,
                account_id,
                self._clock(),
                tz=self._settings.tz,
                journal=self._journal,
            )
        with self._account_lock(user_id, account_id, blocking=True):
            return self._monitor_locked(user_id, account_id)

    def start_monitoring(self, user_id: str, account_id: str) -> MonitorScheduler:
        """Start the periodic monitor for one account. No-op when already running."""
        if self._scheduler is not None and self._scheduler.is_running:
            return self._scheduler
        self._scheduler = MonitorScheduler(
            lambda: self.tick(user_id, account_id),
            self._settings.monitor_interval_sec,
            name=f"{user_id}:{account_id}",
        )
        self._scheduler.start()
        return self._scheduler

    def stop_monitoring(self) -> None:
        """Stop future ticks. A cycle already running completes."""
        if self._scheduler is not None:
            self._scheduler.stop()

    def tick(self, user_id: str, account_id: str) -> CycleResult:
        """One scheduled pass; skipped when the account already has one in flight."""
        if not account_id:
            return self.monitor(user_id, account_id)
        with self._account_lock(user_id, account_id, blocking=False) as acquired:
            if not acquired:
                self._logger.info("tick_skipped_busy", user_id=user_id, account_id=account_id)
                return CycleResult(status="skipped_busy")
            return self._monitor_locked(user_id, account_id)

    def _monitor_locked(self, user_id: str, account_id: str) -> CycleResult:
        sync_result = self._sync_locked(user_id, account_id)
        result = run_cycle(
            self._ledger,
            self._broker,
            user_id,
            account_id,
            self._clock(),
            tz=self._settings.tz,
            journal=self._journal,
        )
        result.warnings = [*sync_result.warnings, *result.warnings]
        self._logger.info(
            "monitor_completed",
            user_id=user_id,
            account_id=account_id,
            status=result.status,
            checked=result.checked,
            violated=result.violated,
            elapsed_ms=round(result.elapsed_ms, 2),
        )
        return result

    def _sync_locked(self, user_id: str, account_id: str) -> SyncResult:
        try:
            result = reconcile_snapshot(
                self._ledger,
                self._broker,
                user_id,
                account_id,
                history_start=self._settings.history_start,
                now=self._clock(),
            )
        except LedgerError as exc:
            self._logger.error("sync_failed", user_id=user_id, account_id=account_id, error=str(exc))
            result = SyncResult(status="ledger_unavailable", warnings=[f"sync_failed:{exc}"])
        if self._journal is not None:
            try:
                self._journal.append(
                    "sync",
                    {
                        "user_id": user_id,
                        "account_id": account_id,
                        "status": result.status,
                        "synced": result.synced,
                        "written": result.written,
                    },
                )
            except OSError as exc:
                self._logger.error("journal_write_failed", event_type="sync", error=str(exc))
                result.warnings.append("journal_write_failed:sync")
        return result

    @contextmanager
    def _account_lock(self, user_id: str, account_id: str, *, blocking: bool) -> Iterator[bool]:
        with self._locks_guard:
            lock = self._locks.setdefault((user_id, account_id), threading.Lock())
        acquired = lock.acquire(blocking=blocking)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()
