from __future__ import annotations

import threading
from typing import Any, Dict


class Metrics:
    """
    In-process counters and gauges.

    Names are flat strings (`send_sessions_started_total`); the optional namespace is
    prepended on snapshot only.
    """

    def __init__(self, namespace: str = "walletsend") -> None:
        self._ns = namespace.strip()
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {}
        self._gauges: Dict[str, float] = {}

    def inc(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + int(value)

    def set_gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[name] = float(value)

    def counter(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def gauge(self, name: str) -> float | None:
        with self._lock:
            return self._gauges.get(name)

    def snapshot(self) -> Dict[str, Any]:
        prefix = f"{self._ns}_" if self._ns else ""
        with self._lock:
            return {
                "counters": {prefix + k: v for k, v in sorted(self._counters.items())},
                "gauges": {prefix + k: v for k, v in sorted(self._gauges.items())},
            }
