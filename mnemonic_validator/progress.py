from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from .stats import RunStats, StatsSnapshot
from .utils import format_duration


logger = logging.getLogger(__name__)

CALCULATING = "Calculating..."

STATUS_PROCESSING = "Processing..."
STATUS_CANCELLING = "Cancelling..."
STATUS_CANCELLED = "Cancelled."
STATUS_DONE = "Done."


@dataclass(frozen=True)
class ProgressSnapshot:
    processed: int
    valid: int
    total: int
    current_index: int
    percent: float
    throughput: float
    eta: str
    status: str


ProgressListener = Callable[[ProgressSnapshot], None]


def _finite(value: float) -> float:
    if math.isnan(value) or math.isinf(value) or value < 0:
        return 0.0
    return value


def throughput(processed: int, elapsed_s: float) -> float:
    if elapsed_s <= 0 or processed <= 0:
        return 0.0
    return _finite(processed / elapsed_s)


def percent_complete(current_index: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return min(100.0, _finite(100.0 * current_index / total))


def estimate_remaining(processed: int, current_index: int, total: int, elapsed_s: float) -> str:
    """Linear ETA from the run's own throughput.

    Returns a placeholder until there is enough signal to extrapolate.
    """
    if processed <= 0:
        return CALCULATING
    rate = throughput(processed, elapsed_s)
    if rate < 0.01:
        return CALCULATING
    remaining = max(0, total - current_index)
    return format_duration(_finite(remaining / rate))


class ProgressReporter:
    """Turns run counters into snapshots, throttled to one per ``interval_s``."""

    def __init__(
        self,
        total: int,
        *,
        interval_s: float = 3.0,
        listeners: Iterable[ProgressListener] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.total = total
        self.interval_s = interval_s
        self.listeners = list(listeners)
        self._clock = clock
        self._lock = threading.Lock()
        self._last_emit: float | None = None

    def snapshot(self, stats: StatsSnapshot, current_index: int, status: str = STATUS_PROCESSING) -> ProgressSnapshot:
        return ProgressSnapshot(
            processed=stats.processed,
            valid=stats.valid,
            total=self.total,
            current_index=current_index,
            percent=percent_complete(current_index, self.total),
            throughput=throughput(stats.processed, stats.elapsed_s),
            eta=estimate_remaining(stats.processed, current_index, self.total, stats.elapsed_s),
            status=status,
        )

    def maybe_report(self, stats: RunStats, current_index: int) -> ProgressSnapshot | None:
        now = self._clock()
        with self._lock:
            if self._last_emit is not None and now - self._last_emit < self.interval_s:
                return None
            self._last_emit = now
        return self._emit(self.snapshot(stats.snapshot(), current_index))

    def report(self, stats: RunStats, current_index: int, status: str = STATUS_PROCESSING) -> ProgressSnapshot:
        with self._lock:
            self._last_emit = self._clock()
        return self._emit(self.snapshot(stats.snapshot(), current_index, status))

    def _emit(self, snap: ProgressSnapshot) -> ProgressSnapshot:
        for listener in self.listeners:
            try:
                listener(snap)
            except Exception:  # noqa: BLE001
                logger.exception("Progress listener failed")
        return snap


class RichProgressListener:
    """Console rendering of progress snapshots."""

    def __init__(self, progress: Progress | None = None, *, console: Console | None = None) -> None:
        self.progress = progress or Progress(
            SpinnerColumn(),
            TextColumn("{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TaskProgressColumn(),
            TextColumn("[green]{task.fields[valid]}[/green] valid"),
            TextColumn("{task.fields[speed]} lines/s"),
            TextColumn("ETA {task.fields[eta]}"),
            TimeElapsedColumn(),
            console=console,
            transient=False,
        )
        self._task_id = None

    def __enter__(self) -> "RichProgressListener":
        self.progress.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.progress.stop()

    def __call__(self, snap: ProgressSnapshot) -> None:
        if self._task_id is None:
            self._task_id = self.progress.add_task(
                "validating", total=snap.total or None, valid=0, speed=0, eta="-"
            )
        self.progress.update(
            self._task_id,
            completed=snap.current_index,
            description=snap.status.rstrip(".").lower() or "validating",
            valid=snap.valid,
            speed=int(snap.throughput),
            eta=snap.eta,
        )
