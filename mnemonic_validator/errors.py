from __future__ import annotations

from pathlib import Path


class ValidatorError(Exception):
    """Base class for errors that abort a validation run."""


class ConfigError(ValidatorError):
    pass


class FatalIOError(ValidatorError):
    def __init__(self, message: str, path: str | Path | None = None) -> None:
        super().__init__(message)
        self.path = Path(path) if path is not None else None


class InputFileError(FatalIOError):
    pass


class OutputOpenError(FatalIOError):
    pass


class OutputWriteError(FatalIOError):
    pass


class CheckpointWriteError(FatalIOError):
    pass
