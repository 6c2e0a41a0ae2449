from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable


@dataclass(frozen=True)
class StatsSnapshot:
    processed: int
    valid: int
    errors: int
    elapsed_s: float


@dataclass
class RunStats:
    """Counters for a single run. Safe to update from worker threads."""

    clock: Callable[[], float] = time.monotonic
    started_at: float = field(default=0.0)
    processed: int = 0
    valid: int = 0
    errors: int = 0

    def __post_init__(self) -> None:
        self._lock = threading.Lock()
        if not self.started_at:
            self.started_at = self.clock()

    def add_processed(self, n: int = 1) -> None:
        with self._lock:
            self.processed += n

    def add_valid(self, n: int = 1) -> None:
        with self._lock:
            self.valid += n

    def add_error(self, n: int = 1) -> None:
        with self._lock:
            self.errors += n

    def elapsed(self) -> float:
        return max(0.0, self.clock() - self.started_at)

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(
                processed=self.processed,
                valid=self.valid,
                errors=self.errors,
                elapsed_s=self.elapsed(),
            )
