from __future__ import annotations

import threading
from typing import Dict


class MetricsStore:
    """Thread-safe in-memory counters for this process only."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {
            "uploads": 0,
            "bytes_uploaded": 0,
            "views": 0,
            "rejected_gone": 0,
            "rejected_rate_limited": 0,
            "deleted": 0,
        }

    def record_upload(self, size_bytes: int) -> None:
        with self._lock:
            self._counters["uploads"] += 1
            self._counters["bytes_uploaded"] += size_bytes

    def record_view(self) -> None:
        self._bump("views")

    def record_rejection(self, reason: str) -> None:
        self._bump(f"rejected_{reason}")

    def record_deletions(self, count: int) -> None:
        if count <= 0:
            return
        self._bump("deleted", count)

    def _bump(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + amount

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counters)


metrics = MetricsStore()
