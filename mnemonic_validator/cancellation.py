"""Cooperative cancellation for validation runs.

Workers never get interrupted mid-line. A signal (or a front-end cancel
button) flips :class:`CancellationToken`; the dispatch loop notices, stops
handing out lines, lets in-flight lines finish, then persists the checkpoint.
"""

from __future__ import annotations

import logging
import signal
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Iterator


logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.CANCELLED, RunStatus.FAILED)


class CancellationToken:
    """Thread-safe one-way flag.

    Examples:
        >>> token = CancellationToken()
        >>> token.is_cancelled()
        False
        >>> token.cancel()
        >>> token.is_cancelled()
        True
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._signal: int | None = None

    @property
    def signal(self) -> int | None:
        """The signal number that triggered cancellation, if any."""
        return self._signal

    def cancel(self, signum: int | None = None) -> None:
        if signum is not None and self._signal is None:
            self._signal = signum
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


DEFAULT_SIGNALS: tuple[signal.Signals, ...] = tuple(
    s for s in (getattr(signal, "SIGINT", None), getattr(signal, "SIGTERM", None)) if s is not None
)


@contextmanager
def signal_handlers(
    token: CancellationToken,
    signals: tuple[signal.Signals, ...] = DEFAULT_SIGNALS,
) -> Iterator[CancellationToken]:
    """Route OS interrupts into ``token`` for the duration of the block.

    The first signal requests a graceful stop. A second one falls back to the
    previous handler, so Ctrl+C twice still kills a stuck run. Outside the
    main thread Python cannot install handlers and this is a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        yield token
        return

    previous: dict[int, object] = {}

    def _handle(signum: int, frame: object) -> None:
        if token.is_cancelled():
            prev = previous.get(signum)
            if callable(prev):
                prev(signum, frame)
                return
            raise KeyboardInterrupt
        logger.warning(
            "Received %s; finishing in-flight lines and saving checkpoint (repeat to force exit)",
            signal.Signals(signum).name,
        )
        token.cancel(signum)

    for sig in signals:
        previous[sig] = signal.getsignal(sig)
        signal.signal(sig, _handle)
    try:
        yield token
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
