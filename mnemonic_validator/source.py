from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from .errors import InputFileError


@dataclass(frozen=True)
class LineRecord:
    index: int
    text: str
    error: str | None = None

    @property
    def is_blank(self) -> bool:
        return self.error is None and not self.text.strip()


def count_lines(path: Path, chunk_size: int = 1024 * 1024) -> int:
    """Count lines the way the reader will see them (an unterminated last line counts)."""
    path = Path(path)
    total = 0
    last = b""
    try:
        with path.open("rb") as f:
            while True:
                chunk = f.read(chunk_size)
                if not chunk:
                    break
                total += chunk.count(b"\n")
                last = chunk[-1:]
    except OSError as e:
        raise InputFileError(f"cannot read input file {path}: {e}", path) from e
    if last and last != b"\n":
        total += 1
    return total


def _decode(raw: bytes, encoding: str) -> str:
    if raw.endswith(b"\n"):
        raw = raw[:-1]
        if raw.endswith(b"\r"):
            raw = raw[:-1]
    return raw.decode(encoding)


def iter_lines(path: Path, *, encoding: str = "utf-8") -> Iterator[LineRecord]:
    path = Path(path)
    try:
        f = path.open("rb")
    except OSError as e:
        raise InputFileError(f"cannot open input file {path}: {e}", path) from e
    with f:
        index = 0
        while True:
            try:
                raw = f.readline()
            except OSError as e:
                raise InputFileError(f"failed reading {path} at line {index}: {e}", path) from e
            if not raw:
                return
            try:
                text = _decode(raw, encoding)
            except UnicodeDecodeError as e:
                yield LineRecord(index=index, text="", error=str(e))
            else:
                yield LineRecord(index=index, text=text)
            index += 1


def open_lines(path: Path, *, encoding: str = "utf-8") -> tuple[int, Iterator[LineRecord]]:
    """Return ``(total_lines, records)``.

    Lines are counted eagerly, so a missing or unreadable input fails here
    rather than on first iteration.
    """
    path = Path(path)
    total = count_lines(path)
    return total, iter_lines(path, encoding=encoding)
