from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import IO

from .errors import OutputOpenError, OutputWriteError
from .utils import ensure_parent


logger = logging.getLogger(__name__)


class OutputSink:
    """Append-only output file shared by all workers.

    Writers take a lock and block on contention. With ``ordered=True`` every
    dispatched index must be emitted exactly once (``None`` for lines that
    produced no output) so lines can be released in input order. With
    ``dedupe=True`` lines already present in the file, or written earlier in
    this run, are not written again.
    """

    def __init__(
        self,
        path: Path,
        *,
        ordered: bool = False,
        dedupe: bool = False,
        start_index: int = 0,
        encoding: str = "utf-8",
    ) -> None:
        self.path = Path(path)
        self.ordered = ordered
        self.dedupe = dedupe
        self.encoding = encoding
        self._lock = threading.Lock()
        self._fh: IO[str] | None = None
        self._seen: set[str] = set()
        self._pending: dict[int, str | None] = {}
        self._next_index = start_index
        self.written = 0
        self.duplicates = 0

    def __enter__(self) -> "OutputSink":
        self.open()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._fh is not None

    def open(self) -> None:
        try:
            ensure_parent(self.path)
            if self.dedupe and self.path.exists():
                self._seen = self._load_existing()
            self._fh = self.path.open("a", encoding=self.encoding, newline="\n")
        except OSError as e:
            raise OutputOpenError(f"cannot open output file {self.path}: {e}", self.path) from e
        if self._seen:
            logger.info("Loaded %d existing output lines for dedupe", len(self._seen))

    def _load_existing(self) -> set[str]:
        seen: set[str] = set()
        with self.path.open("r", encoding=self.encoding, errors="replace") as f:
            for line in f:
                line = line.rstrip("\r\n")
                if line:
                    seen.add(line)
        return seen

    def emit(self, index: int, line: str | None) -> bool:
        """Hand one result to the sink. Returns True if ``line`` is (or will be) written."""
        with self._lock:
            accepted = line is not None and self._accept(line)
            if not self.ordered:
                if accepted:
                    self._write(line)
                return accepted
            self._pending[index] = line if accepted else None
            self._release_ready()
            return accepted

    def _accept(self, line: str) -> bool:
        if not self.dedupe:
            return True
        if line in self._seen:
            self.duplicates += 1
            return False
        self._seen.add(line)
        return True

    def _release_ready(self) -> None:
        while self._next_index in self._pending:
            line = self._pending.pop(self._next_index)
            if line is not None:
                self._write(line)
            self._next_index += 1

    def _write(self, line: str) -> None:
        if self._fh is None:
            raise OutputWriteError(f"output file {self.path} is not open", self.path)
        try:
            self._fh.write(line + "\n")
        except OSError as e:
            raise OutputWriteError(f"failed to write output file {self.path}: {e}", self.path) from e
        self.written += 1

    def flush(self) -> None:
        with self._lock:
            self._flush()

    def _flush(self) -> None:
        if self._fh is None:
            return
        try:
            self._fh.flush()
            os.fsync(self._fh.fileno())
        except OSError as e:
            raise OutputWriteError(f"failed to flush output file {self.path}: {e}", self.path) from e

    def close(self) -> None:
        with self._lock:
            if self._fh is None:
                return
            try:
                # Gaps left by cancelled lines: release what we have in index order.
                for index in sorted(self._pending):
                    line = self._pending[index]
                    if line is not None:
                        self._write(line)
                self._pending.clear()
                self._flush()
            finally:
                self._fh.close()
                self._fh = None
