from __future__ import annotations

import logging
import queue
import threading
from dataclasses import replace

from .cancellation import CancellationToken, RunStatus
from .config import ValidatorConfig
from .errors import ValidatorError
from .predicates import Predicate
from .progress import STATUS_CANCELLING, ProgressSnapshot
from .runner import RunResult, ValidationRun


logger = logging.getLogger(__name__)

_EMPTY = ProgressSnapshot(
    processed=0,
    valid=0,
    total=0,
    current_index=0,
    percent=0.0,
    throughput=0.0,
    eta="-",
    status="",
)


class ValidationJob:
    """Background run driven by an interactive front-end.

    ``start()`` launches the run on a worker thread, ``cancel()`` requests a
    graceful stop, and ``updates`` is the progress channel: a queue of
    :class:`ProgressSnapshot` whose last item carries the final status text
    (``"Done."``, ``"Cancelled."`` or ``"Error: ..."``).
    """

    def __init__(self, config: ValidatorConfig, predicate: Predicate | None = None) -> None:
        self.config = config
        self.predicate = predicate
        self.token = CancellationToken()
        self.updates: "queue.Queue[ProgressSnapshot]" = queue.Queue()
        self.result: RunResult | None = None
        self.error: BaseException | None = None
        self._thread: threading.Thread | None = None
        self._last: ProgressSnapshot = _EMPTY
        self._run: ValidationRun | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def status(self) -> RunStatus:
        if self._run is None:
            return RunStatus.IDLE
        return self._run.status

    def start(self) -> None:
        if self.is_running:
            raise RuntimeError("validation job is already running")
        self.token = CancellationToken()
        self.result = None
        self.error = None
        self._last = _EMPTY
        self._run = ValidationRun(self.config, self.predicate, token=self.token, listeners=[self._publish])
        self._thread = threading.Thread(target=self._target, name="validation-job", daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        if not self.is_running or self.token.is_cancelled():
            return
        self.token.cancel()
        self._publish(replace(self._last, eta="-", status=STATUS_CANCELLING))

    def join(self, timeout: float | None = None) -> RunResult | None:
        if self._thread is not None:
            self._thread.join(timeout)
        return self.result

    def drain_updates(self) -> list[ProgressSnapshot]:
        """Non-blocking read of everything published since the last call."""
        items: list[ProgressSnapshot] = []
        while True:
            try:
                items.append(self.updates.get_nowait())
            except queue.Empty:
                return items

    def _publish(self, snap: ProgressSnapshot) -> None:
        self._last = snap
        self.updates.put(snap)

    def _target(self) -> None:
        assert self._run is not None
        try:
            self.result = self._run.run()
        except ValidatorError as e:
            self.error = e
            logger.error("Validation failed: %s", e)
            self._publish(replace(self._last, eta="-", status=f"Error: {e}"))
