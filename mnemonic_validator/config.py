from __future__ import annotations

import codecs
import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from .checkpoint import default_checkpoint_path
from .errors import ConfigError
from .predicates import available_languages


DEFAULT_INPUT = Path("input/mnemonics.txt")
DEFAULT_OUTPUT = Path("output/valid_mnemonics.txt")
DEFAULT_OUTPUT_DIR = Path("output")

# Probed in the working directory when the default input is missing.
INPUT_CANDIDATES = ("wordlist", "mnemonics", "seeds", "input")

_PATH_FIELDS = {"input_path", "output_path", "checkpoint_path"}
_BOOL_FIELDS = ("ordered", "dedupe")


def _default_workers() -> int:
    return os.cpu_count() or 1


@dataclass(frozen=True)
class ValidatorConfig:
    # Paths
    input_path: Path = DEFAULT_INPUT
    output_path: Path = DEFAULT_OUTPUT
    checkpoint_path: Path = default_checkpoint_path()

    # Runtime
    workers: int = _default_workers()
    max_in_flight: int = 0
    checkpoint_every: int = 10_000
    progress_interval_s: float = 3.0
    grace_period_s: float = 10.0

    # Output
    ordered: bool = False
    dedupe: bool = False

    # Input
    language: str = "english"
    encoding: str = "utf-8"

    @property
    def in_flight_limit(self) -> int:
        return self.max_in_flight if self.max_in_flight > 0 else 4 * self.workers

    @staticmethod
    def from_json_file(path: str | Path) -> "ValidatorConfig":
        path = Path(path)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"cannot load config {path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"config {path} must be a JSON object")
        return ValidatorConfig().with_overrides(**raw)

    def with_overrides(self, **overrides: Any) -> "ValidatorConfig":
        """Return a copy with non-None overrides applied and validated."""
        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ConfigError(f"unknown config keys: {', '.join(unknown)}")

        values: dict[str, Any] = {}
        for key, value in overrides.items():
            if value is None:
                continue
            if key in _PATH_FIELDS:
                value = Path(value).expanduser()
            values[key] = value
        try:
            cfg = replace(self, **values)
            cfg = replace(
                cfg,
                workers=int(cfg.workers),
                max_in_flight=int(cfg.max_in_flight),
                checkpoint_every=int(cfg.checkpoint_every),
                progress_interval_s=float(cfg.progress_interval_s),
                grace_period_s=float(cfg.grace_period_s),
                language=str(cfg.language),
                encoding=str(cfg.encoding),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid config value: {e}") from e
        cfg.validate()
        return cfg

    def validate(self) -> None:
        for name in _BOOL_FIELDS:
            if not isinstance(getattr(self, name), bool):
                raise ConfigError(f"{name} must be true or false")
        if self.workers < 1:
            raise ConfigError("workers must be >= 1")
        if self.max_in_flight < 0:
            raise ConfigError("max_in_flight must be >= 0")
        if self.checkpoint_every < 1:
            raise ConfigError("checkpoint_every must be >= 1")
        if self.progress_interval_s < 0:
            raise ConfigError("progress_interval_s must be >= 0")
        if self.grace_period_s < 0:
            raise ConfigError("grace_period_s must be >= 0")
        if self.language not in available_languages():
            raise ConfigError(f"unsupported wordlist language: {self.language}")
        try:
            codecs.lookup(self.encoding)
        except LookupError as e:
            raise ConfigError(f"unknown encoding: {self.encoding}") from e
        if self.input_path.resolve() == self.output_path.resolve():
            raise ConfigError("input and output must be different files")


def auto_output_path(input_path: Path, output_dir: Path = DEFAULT_OUTPUT_DIR) -> Path:
    stem = Path(input_path).stem or "output"
    return Path(output_dir) / f"{stem}_valid.txt"


def discover_input(cwd: Path | None = None) -> Path | None:
    base = Path(cwd) if cwd is not None else Path(".")
    for name in INPUT_CANDIDATES:
        for candidate in (base / f"{name}.txt", base / name):
            if candidate.is_file():
                return candidate
    return None
