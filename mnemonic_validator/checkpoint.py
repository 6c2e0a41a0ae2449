from __future__ import annotations

import logging
import threading
from pathlib import Path

from .errors import CheckpointWriteError
from .utils import atomic_write_text, ensure_parent


logger = logging.getLogger(__name__)

CHECKPOINT_FILENAME = ".mnemonic_validator_checkpoint.txt"


def default_checkpoint_path() -> Path:
    try:
        home = Path.home()
    except RuntimeError:
        home = Path(".")
    return home / CHECKPOINT_FILENAME


def load_checkpoint(path: Path) -> int:
    """Return the saved line index, or 0 when there is nothing usable on disk."""
    path = Path(path)
    if not path.exists():
        return 0
    try:
        raw = path.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Ignoring unreadable checkpoint %s: %s", path, e)
        return 0
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring corrupt checkpoint %s: %r", path, raw[:40])
        return 0
    if value < 0:
        logger.warning("Ignoring negative checkpoint %s: %d", path, value)
        return 0
    return value


def save_checkpoint(path: Path, index: int) -> None:
    path = ensure_parent(path)
    try:
        atomic_write_text(path, str(int(index)))
    except OSError as e:
        raise CheckpointWriteError(f"failed to write checkpoint {path}: {e}", path) from e


def clear_checkpoint(path: Path) -> bool:
    path = Path(path)
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


class CheckpointStore:
    """Checkpoint file shared by all workers of one run.

    Saves are serialized and never move the stored value backwards.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._last_saved: int | None = None

    @property
    def last_saved(self) -> int | None:
        return self._last_saved

    def load(self) -> int:
        value = load_checkpoint(self.path)
        with self._lock:
            self._last_saved = value
        return value

    def save(self, index: int) -> bool:
        with self._lock:
            if self._last_saved is not None and index < self._last_saved:
                return False
            save_checkpoint(self.path, index)
            self._last_saved = index
            return True

    def clear(self) -> None:
        with self._lock:
            clear_checkpoint(self.path)
            self._last_saved = None


class HighWaterMark:
    """Contiguous completion frontier over line indices.

    ``value`` is the smallest index not yet completed, so every index below it
    is done. Completions may arrive in any order.
    """

    def __init__(self, start: int = 0) -> None:
        self._lock = threading.Lock()
        self._frontier = start
        self._done: set[int] = set()
        self._highest_seen = start - 1

    @property
    def value(self) -> int:
        with self._lock:
            return self._frontier

    @property
    def highest_seen(self) -> int:
        with self._lock:
            return self._highest_seen

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._done)

    def complete(self, index: int) -> int:
        with self._lock:
            if index > self._highest_seen:
                self._highest_seen = index
            if index < self._frontier:
                return self._frontier
            self._done.add(index)
            while self._frontier in self._done:
                self._done.remove(self._frontier)
                self._frontier += 1
            return self._frontier
