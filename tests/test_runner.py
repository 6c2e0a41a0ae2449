from __future__ import annotations

import threading

import pytest

from mnemonic_validator.cancellation import CancellationToken, RunStatus
from mnemonic_validator.checkpoint import load_checkpoint, save_checkpoint
from mnemonic_validator.errors import InputFileError, OutputOpenError, OutputWriteError
from mnemonic_validator.predicates import Bip39Predicate
from mnemonic_validator.progress import STATUS_CANCELLED, STATUS_DONE
from mnemonic_validator import runner
from mnemonic_validator.runner import ValidationRun, run_validation
from mnemonic_validator.sink import OutputSink

from conftest import (
    BAD_CHECKSUM_12,
    VALID_12,
    VALID_24,
    index_of,
    numbered,
    read_output,
)


class Recorder:
    """Predicate that accepts everything and remembers what it saw."""

    def __init__(self, accept=lambda text: True) -> None:
        self.accept = accept
        self.seen: list[str] = []
        self._lock = threading.Lock()

    def __call__(self, text: str) -> bool:
        with self._lock:
            self.seen.append(text)
        return self.accept(text)


def test_bip39_example_run(make_config):
    cfg = make_config([VALID_24, "not a phrase", VALID_12])
    result = run_validation(cfg, Bip39Predicate())

    assert result.status is RunStatus.COMPLETED
    assert result.processed == 3
    assert result.valid == 2
    assert sorted(read_output(cfg.output_path)) == sorted([VALID_24, VALID_12])
    assert not cfg.checkpoint_path.exists()


def test_default_predicate_is_bip39(make_config):
    cfg = make_config([BAD_CHECKSUM_12, VALID_12])
    result = run_validation(cfg)
    assert result.valid == 1
    assert read_output(cfg.output_path) == [VALID_12]


def test_empty_input_completes_immediately(make_config):
    cfg = make_config([])
    snapshots = []
    result = run_validation(cfg, Recorder(), listeners=[snapshots.append])

    assert result.status is RunStatus.COMPLETED
    assert result.total == 0
    assert result.processed == 0
    assert result.valid == 0
    assert snapshots[-1].status == STATUS_DONE
    assert read_output(cfg.output_path) == []


def test_blank_lines_are_not_counted(make_config):
    cfg = make_config(["a", "", "   ", "b"])
    pred = Recorder()
    result = run_validation(cfg, pred)
    assert result.processed == 2
    assert sorted(pred.seen) == ["a", "b"]


def test_predicate_sees_trimmed_text_but_output_keeps_original(make_config):
    cfg = make_config(["  padded  "], workers=1)
    pred = Recorder()
    run_validation(cfg, pred)
    assert pred.seen == ["padded"]
    assert read_output(cfg.output_path) == ["  padded  "]


@pytest.mark.parametrize("start", [0, 1, 7, 19, 20])
def test_resume_processes_exactly_lines_at_or_after_checkpoint(make_config, start):
    cfg = make_config(numbered(20))
    save_checkpoint(cfg.checkpoint_path, start)
    pred = Recorder()

    result = run_validation(cfg, pred)

    assert sorted(index_of(t) for t in pred.seen) == list(range(start, 20))
    assert result.start_index == start
    assert result.processed == 20 - start


def test_corrupt_checkpoint_restarts_from_zero(make_config):
    cfg = make_config(numbered(5))
    cfg.checkpoint_path.parent.mkdir(parents=True, exist_ok=True)
    cfg.checkpoint_path.write_text("garbage", encoding="utf-8")
    pred = Recorder()
    result = run_validation(cfg, pred)
    assert result.processed == 5


def test_two_full_runs_produce_the_same_output_set(make_config, tmp_path):
    lines = numbered(200)
    keep_even = Recorder(lambda t: index_of(t) % 2 == 0)

    first = make_config(lines, workers=4, output_path=tmp_path / "a.txt")
    second = make_config(lines, workers=4, output_path=tmp_path / "b.txt")
    run_validation(first, keep_even)
    run_validation(second, keep_even)

    assert set(read_output(first.output_path)) == set(read_output(second.output_path))
    assert len(read_output(first.output_path)) == 100


def test_ordered_mode_preserves_input_order(make_config):
    lines = numbered(300)
    cfg = make_config(lines, workers=8, ordered=True)
    run_validation(cfg, Recorder(lambda t: index_of(t) % 3 == 0))
    assert read_output(cfg.output_path) == [t for t in lines if index_of(t) % 3 == 0]


def test_dedupe_mode_skips_lines_from_a_previous_run(make_config):
    cfg = make_config(["x", "y", "x"], workers=1, dedupe=True)
    run_validation(cfg, Recorder())
    run_validation(cfg, Recorder())
    assert read_output(cfg.output_path) == ["x", "y"]


def test_checkpoint_is_written_on_cadence(make_config):
    cfg = make_config(numbered(10), workers=1, max_in_flight=1, checkpoint_every=2)
    observed = {}

    def pred(text: str) -> bool:
        if index_of(text) == 5:
            observed["checkpoint"] = load_checkpoint(cfg.checkpoint_path)
        return False

    run_validation(cfg, pred)
    assert observed["checkpoint"] == 4
    assert not cfg.checkpoint_path.exists()


def test_cancel_saves_checkpoint_not_past_processed_lines_and_resume_finishes(make_config):
    lines = numbered(50)
    cfg = make_config(lines, workers=1, max_in_flight=1)
    token = CancellationToken()
    first = Recorder()

    def cancel_at_three(text: str) -> bool:
        first(text)
        if index_of(text) == 3:
            token.cancel()
        return True

    snapshots = []
    result = ValidationRun(cfg, cancel_at_three, token=token, listeners=[snapshots.append]).run()

    assert result.status is RunStatus.CANCELLED
    assert result.processed == 4
    saved = load_checkpoint(cfg.checkpoint_path)
    assert saved == result.checkpoint
    assert saved <= result.processed
    assert snapshots[-1].status == STATUS_CANCELLED

    second = Recorder()
    resumed = run_validation(cfg, second)
    assert resumed.status is RunStatus.COMPLETED
    done_first = {index_of(t) for t in first.seen}
    done_second = {index_of(t) for t in second.seen}
    assert min(done_second) == saved
    assert done_first | done_second == set(range(50))
    assert set(read_output(cfg.output_path)) == set(lines)


def test_cancel_under_parallel_workers_never_skips_a_line(make_config):
    lines = numbered(2000)
    cfg = make_config(lines, workers=6, checkpoint_every=50)
    token = CancellationToken()
    first = Recorder()

    def pred(text: str) -> bool:
        first(text)
        if index_of(text) == 700:
            token.cancel()
        return True

    result = ValidationRun(cfg, pred, token=token).run()
    assert result.status is RunStatus.CANCELLED

    saved = load_checkpoint(cfg.checkpoint_path)
    handled = {index_of(t) for t in first.seen}
    assert set(range(saved)) <= handled

    second = Recorder()
    run_validation(cfg, second)
    assert handled | {index_of(t) for t in second.seen} == set(range(2000))


def test_cancel_after_every_line_is_dispatched_is_not_completed(make_config, monkeypatch):
    lines = numbered(3)
    cfg = make_config(lines, workers=1)
    assert cfg.in_flight_limit > len(lines)
    token = CancellationToken()
    dispatched = threading.Event()
    real_open_lines = runner.open_lines

    def tracking_open_lines(path, encoding="utf-8"):
        total, records = real_open_lines(path, encoding=encoding)

        def tracked():
            yield from records
            dispatched.set()

        return total, tracked()

    monkeypatch.setattr(runner, "open_lines", tracking_open_lines)
    first = Recorder()

    def cancel_on_first(text: str) -> bool:
        first(text)
        if index_of(text) == 0:
            assert dispatched.wait(10)
            token.cancel()
        return True

    result = ValidationRun(cfg, cancel_on_first, token=token).run()

    assert result.status is RunStatus.CANCELLED
    assert result.processed == 1
    assert result.checkpoint == 1
    assert load_checkpoint(cfg.checkpoint_path) == 1
    assert [index_of(t) for t in first.seen] == [0]

    second = Recorder()
    resumed = run_validation(cfg, second)
    assert resumed.status is RunStatus.COMPLETED
    assert sorted(index_of(t) for t in second.seen) == [1, 2]
    assert set(read_output(cfg.output_path)) == set(lines)


def test_lines_still_running_after_grace_period_are_left_for_resume(make_config, caplog):
    cfg = make_config(numbered(3), workers=1, grace_period_s=0.1)
    token = CancellationToken()
    release = threading.Event()

    def stuck_on_first(text: str) -> bool:
        if index_of(text) == 0:
            token.cancel()
            release.wait(10)
        return True

    try:
        result = ValidationRun(cfg, stuck_on_first, token=token).run()
    finally:
        release.set()

    assert result.status is RunStatus.CANCELLED
    assert result.checkpoint == 0
    assert load_checkpoint(cfg.checkpoint_path) == 0
    assert "still running after 0.1s grace period" in caplog.text
    assert "the process exits once they return" in caplog.text


def test_missing_input_fails(make_config):
    cfg = make_config(None)
    run = ValidationRun(cfg, Recorder())
    with pytest.raises(InputFileError):
        run.run()
    assert run.status is RunStatus.FAILED


def test_unopenable_output_fails(make_config, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")
    cfg = make_config(["a"], output_path=blocker / "valid.txt")
    run = ValidationRun(cfg, Recorder())
    with pytest.raises(OutputOpenError):
        run.run()
    assert run.status is RunStatus.FAILED


def test_write_failure_aborts_and_keeps_checkpoint(make_config, monkeypatch):
    cfg = make_config(numbered(10), workers=1, max_in_flight=1)

    def broken_write(self, line):
        raise OutputWriteError("disk full", self.path)

    monkeypatch.setattr(OutputSink, "_write", broken_write)
    run = ValidationRun(cfg, Recorder())
    with pytest.raises(OutputWriteError):
        run.run()
    assert run.status is RunStatus.FAILED
    assert load_checkpoint(cfg.checkpoint_path) == 0


def test_predicate_errors_are_logged_and_skipped(make_config, caplog):
    def flaky(text: str) -> bool:
        if text == "bad":
            raise ValueError("cannot parse")
        return True

    cfg = make_config(["ok", "bad", "fine"], workers=1)
    result = run_validation(cfg, flaky)

    assert result.status is RunStatus.COMPLETED
    assert result.errors == 1
    assert result.valid == 2
    assert "Predicate failed on line 1" in caplog.text


def test_undecodable_line_is_skipped(make_config):
    cfg = make_config(None)
    cfg.input_path.parent.mkdir(parents=True, exist_ok=True)
    cfg.input_path.write_bytes(b"first\n\xff\xfe\nthird\n")
    pred = Recorder()
    result = run_validation(cfg, pred)
    assert result.errors == 1
    assert sorted(pred.seen) == ["first", "third"]
    assert sorted(read_output(cfg.output_path)) == ["first", "third"]
