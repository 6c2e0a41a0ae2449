from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .cancellation import CancellationToken, RunStatus, signal_handlers
from .checkpoint import clear_checkpoint
from .config import DEFAULT_INPUT, ValidatorConfig, auto_output_path, discover_input
from .errors import ConfigError, ValidatorError
from .log import get_console, setup_logging
from .predicates import Bip39Predicate
from .progress import RichProgressListener
from .runner import ValidationRun
from .utils import format_duration


EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="mnemonic-validator",
        description="Validates BIP39 mnemonic phrases from a file.",
        epilog=(
            "Reads mnemonic phrases from an input file (one per line), validates them, "
            "and appends the valid ones to an output file. Progress is checkpointed "
            "so an interrupted run (Ctrl+C) resumes where it stopped."
        ),
    )
    p.add_argument("-i", "--input", type=Path, default=None, help=f"input file (default: {DEFAULT_INPUT})")
    out = p.add_mutually_exclusive_group()
    out.add_argument("-o", "--output", type=Path, default=None, help="output file (default: output/valid_mnemonics.txt)")
    out.add_argument("--auto-output", action="store_true", help="write to output/<input-stem>_valid.txt")
    p.add_argument("--config", type=Path, default=None, help="JSON config file (CLI flags take precedence)")
    p.add_argument("--checkpoint", type=Path, default=None, help="checkpoint file (default: ~/.mnemonic_validator_checkpoint.txt)")
    p.add_argument("--reset", action="store_true", help="discard any saved checkpoint and start from the first line")
    p.add_argument("-w", "--workers", type=int, default=None, help="worker threads (default: CPU count)")
    p.add_argument("--checkpoint-every", type=int, default=None, help="lines between checkpoints (default: 10000)")
    p.add_argument("--progress-interval", type=float, default=None, help="seconds between progress updates (default: 3)")
    p.add_argument("--grace-period", type=float, default=None, help="seconds to wait for in-flight lines on cancel (default: 10)")
    p.add_argument("--ordered", action="store_true", default=None, help="write valid lines in input order")
    p.add_argument("--dedupe", action="store_true", default=None, help="skip lines already present in the output file")
    p.add_argument("--language", default=None, help="BIP39 wordlist language (default: english)")
    p.add_argument("--encoding", default=None, help="input/output text encoding (default: utf-8)")
    p.add_argument("--log-file", type=Path, default=None, help="also append logs to this file")
    p.add_argument("--no-progress", action="store_true", help="disable the progress bar")
    p.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return p


def _resolve_input(ns: argparse.Namespace, cfg: ValidatorConfig, from_config: bool) -> Path:
    if ns.input is not None:
        return ns.input
    if from_config or cfg.input_path.exists():
        return cfg.input_path
    found = discover_input()
    return found if found is not None else cfg.input_path


def build_config(ns: argparse.Namespace) -> ValidatorConfig:
    base = ValidatorConfig.from_json_file(ns.config) if ns.config is not None else ValidatorConfig()
    cfg = base.with_overrides(
        input_path=_resolve_input(ns, base, ns.config is not None),
        checkpoint_path=ns.checkpoint,
        workers=ns.workers,
        checkpoint_every=ns.checkpoint_every,
        progress_interval_s=ns.progress_interval,
        grace_period_s=ns.grace_period,
        ordered=ns.ordered,
        dedupe=ns.dedupe,
        language=ns.language,
        encoding=ns.encoding,
    )
    if ns.auto_output:
        return cfg.with_overrides(output_path=auto_output_path(cfg.input_path))
    return cfg.with_overrides(output_path=ns.output)


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    ns = _build_parser().parse_args(argv)
    logger = setup_logging(verbose=ns.verbose, log_file=ns.log_file)

    try:
        cfg = build_config(ns)
    except ConfigError as e:
        raise SystemExit(f"config error: {e}")

    if not cfg.input_path.exists():
        logger.error("Input file not found at '%s'", cfg.input_path)
        return EXIT_FAILED

    if ns.reset and clear_checkpoint(cfg.checkpoint_path):
        logger.info("Discarded checkpoint %s", cfg.checkpoint_path)

    token = CancellationToken()
    listeners = []
    bar = None
    if not ns.no_progress:
        bar = RichProgressListener(console=get_console())
        listeners.append(bar)

    run = ValidationRun(cfg, Bip39Predicate(cfg.language), token=token, listeners=listeners)
    try:
        with signal_handlers(token):
            if bar is not None:
                with bar:
                    result = run.run()
            else:
                result = run.run()
    except ValidatorError as e:
        logger.error("Error: %s", e)
        return EXIT_FAILED
    except KeyboardInterrupt:
        logger.warning("Interrupted. Checkpoint saved at line %d.", run.mark.value)
        return EXIT_CANCELLED

    if result.status is RunStatus.CANCELLED:
        logger.info("Resume with the same command to continue from line %d.", result.checkpoint)
        return EXIT_CANCELLED

    console = get_console()
    console.print(f"[bold green]Validation complete![/bold green] Valid mnemonics found: {result.valid}")
    console.print(f"Time taken: {format_duration(result.elapsed_s)}")
    console.print(f"Processing speed: {int(result.lines_per_second)} lines/s")
    console.print(f"Output: {cfg.output_path}")
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
