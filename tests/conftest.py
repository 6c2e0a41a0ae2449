from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from mnemonic_validator.config import ValidatorConfig


VALID_12 = "abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon about"
VALID_12_B = "legal winner thank year wave sausage worth useful legal winner thank yellow"
VALID_24 = " ".join(["abandon"] * 23 + ["art"])
BAD_CHECKSUM_12 = " ".join(["abandon"] * 12)


def write_lines(path: Path, lines: list[str], *, trailing_newline: bool = True) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    text = "\n".join(lines)
    if lines and trailing_newline:
        text += "\n"
    path.write_text(text, encoding="utf-8")
    return path


def read_output(path: Path) -> list[str]:
    if not path.exists():
        return []
    return [line for line in path.read_text(encoding="utf-8").splitlines() if line]


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., ValidatorConfig]:
    def _make(lines: list[str] | None = None, **overrides) -> ValidatorConfig:
        input_path = tmp_path / "input" / "mnemonics.txt"
        if lines is not None:
            write_lines(input_path, lines)
        values = {
            "input_path": input_path,
            "output_path": tmp_path / "output" / "valid.txt",
            "checkpoint_path": tmp_path / "state" / "checkpoint.txt",
            "workers": 2,
            "progress_interval_s": 0.0,
            "grace_period_s": 5.0,
        }
        values.update(overrides)
        return ValidatorConfig(**values)

    return _make


def numbered(n: int, prefix: str = "line") -> list[str]:
    return [f"{prefix}-{i}" for i in range(n)]


def index_of(text: str) -> int:
    return int(text.rsplit("-", 1)[1])
