"""
Tests for FuzzDriver - the run loop.

Tests cover:
- Sample cycling order and trials per sample
- Counter invariants across outcome mixes
- Intentional artifact caps over many trials
- Failed mutations never count
- Display cadence
- Signal-triggered shutdown: final snapshot and stopped state
- Configuration errors before the loop
- An end-to-end run with real stand-in binaries
"""
import os
import random
import signal
from pathlib import Path
from typing import List, Optional

import pytest

from conftest import COPY_MUTATOR, FAILING_MUTATOR, exit_target
from zzharness.engine.classifier import OutcomeClassifier
from zzharness.engine.driver import FuzzDriver
from zzharness.engine.trial_executor import TrialExecutor, TrialResult
from zzharness.exceptions import ConfigurationError
from zzharness.models import ExitStatus, OutcomeKind, SessionState


class ScriptedExecutor:
    """TrialExecutor stand-in that replays a list of statuses.

    ``None`` in the script means the mutator failed; ``"hang"`` means the
    target timed out.
    """

    def __init__(self, script: List, codes=(50, -12), on_trial=None):
        self.classifier = OutcomeClassifier(list(codes), signals_as_intentional=False)
        self.script = script
        self.calls: List[Path] = []
        self.on_trial = on_trial

    def verify_tools(self) -> None:
        pass

    def run_trial(self, sample, mutant, seed, ratio=None, timeout=None) -> Optional[TrialResult]:
        self.calls.append(sample)
        if self.on_trial:
            self.on_trial(len(self.calls))
        entry = self.script[(len(self.calls) - 1) % len(self.script)]
        if entry is None:
            return None
        mutant.write_bytes(b"mutant of " + sample.name.encode())
        if entry == "hang":
            return TrialResult(self.classifier.classify(None, timed_out=True), mutant, None, 1.0)
        status = ExitStatus.from_returncode(entry)
        return TrialResult(self.classifier.classify(status), mutant, status, 0.01)


class RecordingRenderer:
    def __init__(self):
        self.records = []

    def render(self, record):
        self.records.append(record)


@pytest.fixture
def renderer():
    return RecordingRenderer()


def _driver(tmp_path, samples_dir, executor, renderer, **kwargs):
    kwargs.setdefault("mutants_per_sample", 3)
    kwargs.setdefault("status_every_n_mutants", 100)
    return FuzzDriver(
        executor=executor,
        renderer=renderer,
        rng=random.Random(1234),
        samples_dir=samples_dir,
        runs_dir=tmp_path / "runs",
        stats_dir=tmp_path / "stats",
        run_tag="run_test",
        **kwargs,
    )


class TestLoop:
    def test_samples_cycle_in_sorted_order(self, tmp_path, samples_dir, renderer):
        executor = ScriptedExecutor([0])
        _driver(tmp_path, samples_dir, executor, renderer, max_iterations=9).run()

        names = [p.name for p in executor.calls]
        assert names == ["a_clip.ivf"] * 3 + ["b_clip.ivf"] * 3 + ["a_clip.ivf"] * 3

    def test_always_normal(self, tmp_path, samples_dir, renderer):
        driver = _driver(tmp_path, samples_dir, ScriptedExecutor([0]), renderer, max_iterations=25)
        assert driver.run() == 0

        counters = driver.counters
        assert counters.total_mutants == 25
        assert counters.crashes == counters.hangs == 0
        assert sum(counters.intentional_counts.values()) == 0
        assert counters.total_samples == 2

    def test_findings_never_exceed_mutants(self, tmp_path, samples_dir, renderer):
        script = [0, 50, 3, "hang", 244, None, -11, 0]
        driver = _driver(tmp_path, samples_dir, ScriptedExecutor(script), renderer, max_iterations=80)
        driver.run()

        counters = driver.counters
        assert counters.total_mutants == 70
        assert counters.crashes == 20
        assert counters.hangs == 10
        assert counters.intentional_counts == {50: 10, -12: 10}
        assert counters.findings <= counters.total_mutants

    def test_intentional_cap_over_hundred_trials(self, tmp_path, samples_dir, renderer, monkeypatch):
        from zzharness.config import settings
        monkeypatch.setattr(settings, "intentional_limit", 5)

        driver = _driver(tmp_path, samples_dir, ScriptedExecutor([50]), renderer, max_iterations=100)
        driver.run()

        assert driver.counters.intentional_counts[50] == 100
        kept = list((tmp_path / "runs" / "run_test" / "intentional" / "50").iterdir())
        assert len(kept) == 5

    def test_failing_mutator_counts_nothing(self, tmp_path, samples_dir, renderer):
        driver = _driver(tmp_path, samples_dir, ScriptedExecutor([None]), renderer, max_iterations=40)
        driver.run()

        assert driver.counters.total_mutants == 0
        assert driver.counters.findings == 0
        assert driver.iterations == 40

    def test_mutants_are_cleaned_up(self, tmp_path, samples_dir, renderer):
        _driver(tmp_path, samples_dir, ScriptedExecutor([0, 3]), renderer, max_iterations=10).run()

        run_dir = tmp_path / "runs" / "run_test"
        assert not (run_dir / "mutants").exists()
        assert len(list((run_dir / "crashed").iterdir())) == 5

    def test_status_cadence(self, tmp_path, samples_dir, renderer):
        driver = _driver(
            tmp_path, samples_dir, ScriptedExecutor([0, None]), renderer,
            max_iterations=20, status_every_n_mutants=5,
        )
        driver.run()

        # initial render, then at 5 and 10 mutants
        assert [r.counters.total_mutants for r in renderer.records] == [0, 5, 10]


class TestShutdown:
    def test_signal_stops_at_trial_boundary(self, tmp_path, samples_dir, renderer, store):
        def interrupt(call_number):
            if call_number == 7:
                os.kill(os.getpid(), signal.SIGINT)

        store.set("fuzz_x", SessionState.RUNNING)
        executor = ScriptedExecutor([3], on_trial=interrupt)
        driver = _driver(tmp_path, samples_dir, executor, renderer, session="fuzz_x", store=store)

        assert driver.run() == 0
        assert driver.stop_requested
        assert driver.counters.total_mutants == 7
        assert driver.counters.crashes == 7
        assert store.get("fuzz_x") == SessionState.STOPPED

        snapshots = list((tmp_path / "stats").glob("stats_run_test_*.txt"))
        assert len(snapshots) == 1
        assert "Total mutants: 7" in snapshots[0].read_text()

    def test_signal_handlers_restored(self, tmp_path, samples_dir, renderer):
        before = signal.getsignal(signal.SIGTERM)
        _driver(tmp_path, samples_dir, ScriptedExecutor([0]), renderer, max_iterations=1).run()
        assert signal.getsignal(signal.SIGTERM) == before

    def test_no_samples_is_configuration_error(self, tmp_path, renderer, store):
        empty = tmp_path / "empty"
        empty.mkdir()
        store.set("fuzz_x", SessionState.RUNNING)
        driver = _driver(tmp_path, empty, ScriptedExecutor([0]), renderer, session="fuzz_x", store=store)

        with pytest.raises(ConfigurationError):
            driver.run()
        assert store.get("fuzz_x") == SessionState.STOPPED
        assert not (tmp_path / "runs" / "run_test").exists()


class TestEndToEnd:
    def test_real_binaries(self, tmp_path, samples_dir, renderer):
        executor = TrialExecutor(
            OutcomeClassifier([50], signals_as_intentional=False),
            mutator_command=COPY_MUTATOR,
            target_command=exit_target(50),
            target_output="/dev/null",
            timeout_sec=5.0,
            poll_interval_sec=0.01,
        )
        driver = _driver(tmp_path, samples_dir, executor, renderer, max_iterations=6)
        driver.run()

        assert driver.counters.total_mutants == 6
        assert driver.counters.intentional_counts[50] == 6
        kept = list((tmp_path / "runs" / "run_test" / "intentional" / "50").iterdir())
        assert len(kept) == 6
        assert all(p.read_bytes().startswith(b"DKIF") for p in kept)

    def test_real_failing_mutator(self, tmp_path, samples_dir, renderer):
        executor = TrialExecutor(
            OutcomeClassifier([50], signals_as_intentional=False),
            mutator_command=FAILING_MUTATOR,
            target_command=exit_target(0),
            target_output="/dev/null",
        )
        driver = _driver(tmp_path, samples_dir, executor, renderer, max_iterations=4)
        driver.run()
        assert driver.counters.total_mutants == 0

    def test_unexecutable_target_stops_with_configuration_error(self, tmp_path, samples_dir, renderer, store):
        target = tmp_path / "dav1d"
        target.write_bytes(b"\x00\x01not a program\x02")
        target.chmod(0o755)
        executor = TrialExecutor(
            OutcomeClassifier([50], signals_as_intentional=False),
            mutator_command=COPY_MUTATOR,
            target_command=[str(target), "-i", "{input}"],
            target_output="/dev/null",
        )
        store.set("fuzz_broken", SessionState.RUNNING)
        driver = _driver(tmp_path, samples_dir, executor, renderer, max_iterations=4,
                         session="fuzz_broken", store=store)

        with pytest.raises(ConfigurationError):
            driver.run()
        assert driver.counters.total_mutants == 0
        assert store.get("fuzz_broken") == SessionState.STOPPED
        assert list((tmp_path / "stats").glob("stats_run_test_*.txt"))
