from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from .utils import ensure_parent


LOGGER_NAME = "mnemonic_validator"

_CONSOLE = Console(stderr=True, highlight=False)


def get_console() -> Console:
    return _CONSOLE


def setup_logging(*, verbose: bool = False, log_file: Path | None = None) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.handlers.clear()

    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")

    # File handler (append for resume)
    if log_file is not None:
        fh = logging.FileHandler(ensure_parent(log_file), mode="a", encoding="utf-8")
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    ch = RichHandler(console=_CONSOLE, rich_tracebacks=True, show_time=True, show_level=True, show_path=False)
    ch.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(ch)

    return logger
