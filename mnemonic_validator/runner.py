from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator

from .cancellation import CancellationToken, RunStatus
from .checkpoint import CheckpointStore, HighWaterMark
from .config import ValidatorConfig
from .errors import ValidatorError
from .predicates import Bip39Predicate, Predicate
from .progress import (
    STATUS_CANCELLED,
    STATUS_DONE,
    STATUS_PROCESSING,
    ProgressListener,
    ProgressReporter,
    throughput,
)
from .sink import OutputSink
from .source import LineRecord, open_lines
from .stats import RunStats
from .utils import format_duration


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunResult:
    status: RunStatus
    total: int
    start_index: int
    checkpoint: int
    processed: int
    valid: int
    errors: int
    written: int
    elapsed_s: float

    @property
    def lines_per_second(self) -> float:
        return throughput(self.processed, self.elapsed_s)


class ValidationRun:
    """One pass over the input file.

    Lines at or above the saved checkpoint are fanned out to a thread pool.
    Each worker evaluates the predicate, hands matches to the shared sink,
    then marks its index complete; the checkpoint only ever records the
    contiguous completed prefix, so a resumed run never skips a line.
    """

    def __init__(
        self,
        config: ValidatorConfig,
        predicate: Predicate | None = None,
        *,
        token: CancellationToken | None = None,
        listeners: Iterable[ProgressListener] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.predicate = predicate or Bip39Predicate(config.language)
        self.token = token or CancellationToken()
        self.listeners = list(listeners)
        self.clock = clock
        self.status = RunStatus.IDLE
        self.store = CheckpointStore(config.checkpoint_path)
        self.stats = RunStats(clock=clock)
        self.mark = HighWaterMark(0)
        self.sink: OutputSink | None = None
        self.reporter: ProgressReporter | None = None

    # ---- worker side ----

    def _process(self, record: LineRecord) -> None:
        if self.token.is_cancelled():
            return
        self.stats.add_processed()
        matched: str | None = None
        if record.error is not None:
            logger.warning("Error reading line %d: %s", record.index, record.error)
            self.stats.add_error()
        else:
            try:
                ok = self.predicate(record.text.strip())
            except Exception as e:  # noqa: BLE001
                logger.warning("Predicate failed on line %d: %s", record.index, e)
                self.stats.add_error()
                ok = False
            if ok:
                matched = record.text
                self.stats.add_valid()
        self._finish(record.index, matched)

    def _finish(self, index: int, matched: str | None) -> None:
        assert self.sink is not None and self.reporter is not None
        self.sink.emit(index, matched)
        frontier = self.mark.complete(index)

        every = self.config.checkpoint_every
        last = self.store.last_saved or 0
        if frontier // every > last // every:
            self._persist(frontier)
        self.reporter.maybe_report(self.stats, frontier)

    def _persist(self, frontier: int) -> None:
        # Output first: the checkpoint must never get ahead of the file.
        assert self.sink is not None
        self.sink.flush()
        if self.store.save(frontier):
            logger.debug("Checkpoint saved at %d", frontier)

    # ---- coordinator side ----

    def _drain(self, done: Iterable[Future]) -> BaseException | None:
        failure: BaseException | None = None
        for fut in done:
            if fut.cancelled():
                continue
            exc = fut.exception()
            if exc is not None and failure is None:
                failure = exc
        return failure

    def _dispatch(self, ex: ThreadPoolExecutor, records: Iterator[LineRecord], start: int) -> tuple[set[Future], BaseException | None, bool]:
        """Feed records to the pool until exhausted, cancelled, or a worker fails.

        Returns ``(in_flight, failure, exhausted)``.
        """
        limit = self.config.in_flight_limit
        inflight: set[Future] = set()
        failure: BaseException | None = None
        try:
            for record in records:
                if record.index < start:
                    continue
                if self.token.is_cancelled():
                    return inflight, None, False
                if record.is_blank:
                    self._finish(record.index, None)
                    continue
                while len(inflight) >= limit:
                    done, inflight = wait(inflight, return_when=FIRST_COMPLETED)
                    failure = self._drain(done)
                    if failure is not None:
                        return inflight, failure, False
                if self.token.is_cancelled():
                    return inflight, None, False
                inflight.add(ex.submit(self._process, record))
        except ValidatorError as e:
            return inflight, e, False
        return inflight, None, True

    def _await(self, inflight: set[Future]) -> tuple[set[Future], BaseException | None]:
        """Wait for the last dispatched lines, stopping early on cancel or failure."""
        while inflight:
            done, inflight = wait(inflight, timeout=0.2, return_when=FIRST_COMPLETED)
            failure = self._drain(done)
            if failure is not None:
                return inflight, failure
            if self.token.is_cancelled():
                break
        return inflight, None

    def run(self) -> RunResult:
        cfg = self.config
        cfg.validate()
        self.status = RunStatus.RUNNING
        try:
            start = self.store.load()
            total, records = open_lines(cfg.input_path, encoding=cfg.encoding)
            if start > total:
                logger.warning("Checkpoint %d is past the end of %s (%d lines); nothing to resume", start, cfg.input_path, total)
            self.store.save(start)

            self.mark = HighWaterMark(start)
            self.stats = RunStats(clock=self.clock)
            self.reporter = ProgressReporter(
                total,
                interval_s=cfg.progress_interval_s,
                listeners=self.listeners,
                clock=self.clock,
            )
            self.sink = OutputSink(
                cfg.output_path,
                ordered=cfg.ordered,
                dedupe=cfg.dedupe,
                start_index=start,
                encoding=cfg.encoding,
            )
            self.sink.open()
        except ValidatorError:
            self.status = RunStatus.FAILED
            raise

        logger.info("Total lines: %d | Starting from checkpoint: %d", total, start)
        logger.info("Input: %s | Output: %s | Workers: %d", cfg.input_path, cfg.output_path, cfg.workers)
        self.reporter.report(self.stats, start, STATUS_PROCESSING)

        ex = ThreadPoolExecutor(max_workers=cfg.workers, thread_name_prefix="validator")
        stragglers: set[Future] = set()
        try:
            inflight, failure, exhausted = self._dispatch(ex, records, start)
            if exhausted:
                inflight, failure = self._await(inflight)
            for fut in inflight:
                fut.cancel()
            done, stragglers = wait(inflight, timeout=cfg.grace_period_s)
            if stragglers:
                # Pool threads are still joined at interpreter exit.
                logger.warning(
                    "%d lines still running after %.1fs grace period; they will be reprocessed on resume "
                    "and the process exits once they return",
                    len(stragglers),
                    cfg.grace_period_s,
                )
            failure = failure or self._drain(done)
        except BaseException as e:
            # Forced exit (second Ctrl+C) or an unexpected error: keep what is done.
            ex.shutdown(wait=False, cancel_futures=True)
            self._fail(e)
        ex.shutdown(wait=not stragglers, cancel_futures=True)

        if failure is not None:
            self._fail(failure)
        # Queued lines return early once cancelled, so an exhausted input is not enough.
        if exhausted and (self.mark.value >= total or not self.token.is_cancelled()):
            return self._complete(total, start)
        return self._cancel(total, start)

    def _complete(self, total: int, start: int) -> RunResult:
        assert self.sink is not None and self.reporter is not None
        self._close_sink()
        self.store.clear()
        self.status = RunStatus.COMPLETED
        snap = self.reporter.report(self.stats, total, STATUS_DONE)
        result = self._result(total, start, checkpoint=total)
        logger.info(
            "Validation complete! Valid: %d | Processed: %d | Time taken: %s | Speed: %d lines/s",
            snap.valid,
            snap.processed,
            format_duration(result.elapsed_s),
            int(result.lines_per_second),
        )
        return result

    def _cancel(self, total: int, start: int) -> RunResult:
        assert self.sink is not None and self.reporter is not None
        self._close_sink()
        checkpoint = self.mark.value
        self.store.save(checkpoint)
        self.status = RunStatus.CANCELLED
        self.reporter.report(self.stats, checkpoint, STATUS_CANCELLED)
        logger.warning("Cancelled. Checkpoint saved at line %d of %d", checkpoint, total)
        return self._result(total, start, checkpoint=checkpoint)

    def _close_sink(self) -> None:
        assert self.sink is not None
        try:
            self.sink.close()
        except ValidatorError as e:
            self._fail(e)

    def _fail(self, failure: BaseException) -> None:
        self.status = RunStatus.FAILED
        assert self.sink is not None
        try:
            self.sink.close()
        except ValidatorError as e:
            logger.error("Could not close output after failure: %s", e)
        try:
            self.store.save(self.mark.value)
        except ValidatorError as e:
            logger.error("Could not save checkpoint after failure: %s", e)
        raise failure

    def _result(self, total: int, start: int, *, checkpoint: int) -> RunResult:
        snap = self.stats.snapshot()
        return RunResult(
            status=self.status,
            total=total,
            start_index=start,
            checkpoint=checkpoint,
            processed=snap.processed,
            valid=snap.valid,
            errors=snap.errors,
            written=self.sink.written if self.sink is not None else 0,
            elapsed_s=snap.elapsed_s,
        )


def run_validation(
    config: ValidatorConfig,
    predicate: Predicate | None = None,
    *,
    token: CancellationToken | None = None,
    listeners: Iterable[ProgressListener] = (),
) -> RunResult:
    return ValidationRun(config, predicate, token=token, listeners=listeners).run()
