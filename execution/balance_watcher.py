"""
Periodic balance refresh for a displayed address.

Runs on its own daemon thread, independent of any send in progress. A failed poll is
recorded and logged; the loop keeps going and the next successful poll republishes.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, List, Optional

from observability import Metrics, build_log_context, log_event

from .chain_reader import ChainReader
from .evm import format_ether

BalanceCallback = Callable[[str, int], None]


class BalanceWatcher:
    def __init__(
        self,
        chain_reader: ChainReader,
        address: str,
        *,
        interval_sec: float = 10.0,
        metrics: Metrics | None = None,
    ) -> None:
        self._reader = chain_reader
        self._address = address
        self._interval = max(0.05, float(interval_sec))
        self._metrics = metrics
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._balance: Optional[int] = None
        self._updated_at: Optional[float] = None
        self._last_error: Optional[str] = None
        self._polls = 0
        self._subscribers: List[BalanceCallback] = []
        self._ctx = build_log_context(component="balance_watcher", address=address)

    @property
    def address(self) -> str:
        return self._address

    def subscribe(self, callback: BalanceCallback) -> Callable[[], None]:
        """Register a callback for each successful poll. Returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=f"balance-{self._address[:10]}", daemon=True)
        self._thread.start()
        log_event("balance_watcher_started", ctx=self._ctx, data={"interval_sec": self._interval})

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=3)
        log_event("balance_watcher_stopped", ctx=self._ctx)

    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def poll_once(self) -> Optional[int]:
        """One refresh. Returns the new balance, or None if the read failed."""
        with self._lock:
            self._polls += 1
        try:
            balance = self._reader.get_balance(self._address)
        except Exception as e:
            with self._lock:
                self._last_error = str(e)
            if self._metrics:
                self._metrics.inc("balance_poll_error_total", 1)
            log_event("balance_poll_failed", ctx=self._ctx, data={"error": str(e)}, level="warning")
            return None

        with self._lock:
            self._balance = int(balance)
            self._updated_at = time.time()
            self._last_error = None
            subscribers = list(self._subscribers)
        if self._metrics:
            self._metrics.inc("balance_poll_total", 1)

        for cb in subscribers:
            try:
                cb(self._address, int(balance))
            except Exception as e:
                log_event("balance_subscriber_failed", ctx=self._ctx, data={"error": str(e)}, level="warning")
        return int(balance)

    def latest(self) -> Optional[int]:
        with self._lock:
            return self._balance

    def status(self) -> Dict[str, Any]:
        with self._lock:
            balance = self._balance
            age = None
            if self._updated_at is not None:
                age = round(time.time() - self._updated_at, 3)
            last_error = self._last_error
            polls = self._polls
        if self._metrics and age is not None:
            self._metrics.set_gauge("balance_age_sec", float(age))
        return {
            "address": self._address,
            "running": self.running(),
            "balance_wei": balance,
            "balance_eth": format_ether(balance) if balance is not None else None,
            "age_sec": age,
            "last_error": last_error,
            "polls": polls,
        }

    def _run(self) -> None:
        while not self._stop.is_set():
            self.poll_once()
            self._stop.wait(self._interval)
