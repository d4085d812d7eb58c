"""Fixed-interval scheduler driving monitoring ticks."""

from __future__ import annotations

import threading
from enum import Enum
from typing import Callable

from trade_guardian.utils.logging import get_logger


class SchedulerState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class MonitorScheduler:
    """Runs ``tick`` immediately on start and then every ``interval_sec``.

    Ticks run one after another on a single worker thread. ``stop`` only
    prevents future ticks; a tick already running finishes normally.
    """

    def __init__(
        self,
        tick: Callable[[], object],
        interval_sec: float = 30.0,
        *,
        name: str = "monitor",
    ) -> None:
        if interval_sec <= 0:
            raise ValueError("interval_must_be_positive")
        self._tick = tick
        self._interval_sec = interval_sec
        self._name = name
        self._logger = get_logger("trade_guardian.scheduler")
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._state = SchedulerState.STOPPED
        self.ticks = 0

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == SchedulerState.RUNNING

    def start(self) -> bool:
        """Arm the scheduler. Returns False when it was already running."""
        with self._lock:
            if self._state == SchedulerState.RUNNING:
                return False
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                name=f"scheduler-{self._name}",
                daemon=True,
            )
            self._state = SchedulerState.RUNNING
            self._thread.start()
        self._logger.info("scheduler_started", name=self._name, interval_sec=self._interval_sec)
        return True

    def stop(self) -> bool:
        """Disarm the scheduler. Returns False when it was already stopped."""
        with self._lock:
            if self._state == SchedulerState.STOPPED:
                return False
            self._stop_event.set()
            self._state = SchedulerState.STOPPED
        self._logger.info("scheduler_stopped", name=self._name, ticks=self.ticks)
        return True

    def join(self, timeout: float | None = None) -> None:
        """Wait for the worker thread to exit after ``stop``."""
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _run(self, stop_event: threading.Event) -> None:
        while True:
            self._run_tick()
            if stop_event.wait(self._interval_sec):
                return

    def _run_tick(self) -> None:
        self.ticks += 1
        try:
            self._tick()
        except Exception as exc:  # noqa: BLE001
            self._logger.exception("scheduler_tick_failed", name=self._name, error=str(exc))
