"""
Fuzz Driver - the unbounded mutate/execute/classify loop of one run.

Component Overview:
-------------------
The driver owns everything about a run:
- the sorted sample set, cycled forever
- the run directory tree (RunLayout)
- the run's Counters, mutated only here and by the CorpusManager it calls
- the StatsSnapshotter and the live status display

Loop Flow:
---------
1. Verify the mutator and target are executable, discover samples
2. Create runs/<run_tag>/ and render an initial status
3. For each sample (cycling): ``mutants_per_sample`` trials
   a. mutate + execute + classify (TrialExecutor)
   b. count the mutant, retain artifacts (CorpusManager)
   c. redraw the status every ``status_every_n_mutants`` mutants
   d. snapshot when the rotation interval has elapsed
4. On any exit path: final snapshot, session recorded as stopped

Shutdown:
--------
SIGINT, SIGTERM and SIGHUP only set a flag. The flag is checked between
trials, so a trial in flight finishes (or times out) and is fully counted
before the final snapshot is written. The session controller's ``stop``
writes the same STOPPED state; whichever write lands last is identical.
"""
from __future__ import annotations

import itertools
import random
import signal
from pathlib import Path
from typing import Dict, List, Optional

import structlog

from zzharness.config import settings
from zzharness.corpus.store import CorpusManager, RunLayout, discover_samples, open_run
from zzharness.display import StatusRenderer
from zzharness.engine.classifier import OutcomeClassifier
from zzharness.engine.snapshotter import StatsSnapshotter
from zzharness.engine.state_store import StateStore
from zzharness.engine.trial_executor import TrialExecutor, TrialResult
from zzharness.models import Counters, SessionState

logger = structlog.get_logger()

_SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)

# zzuf seeds are drawn from the same range as bash's $RANDOM
_SEED_RANGE = 32768


class FuzzDriver:
    """
    Runs the fuzz loop until told to stop.
    """

    def __init__(
        self,
        session: Optional[str] = None,
        executor: Optional[TrialExecutor] = None,
        store: Optional[StateStore] = None,
        renderer: Optional[StatusRenderer] = None,
        rng: Optional[random.Random] = None,
        samples_dir: Optional[Path] = None,
        runs_dir: Optional[Path] = None,
        stats_dir: Optional[Path] = None,
        mutants_per_sample: Optional[int] = None,
        status_every_n_mutants: Optional[int] = None,
        max_iterations: Optional[int] = None,
        run_tag: Optional[str] = None,
    ):
        """
        Args:
            session: Owning session name; recorded as stopped on exit
            executor: TrialExecutor (built from settings if omitted)
            store: StateStore, only needed when ``session`` is set
            renderer: Status display; None builds a rich console renderer
            rng: Source of mutation seeds
            max_iterations: Stop after this many trial attempts (unbounded if None)
            run_tag: Run identifier; defaults to run_<timestamp>
        """
        self.session = session
        self.executor = executor or TrialExecutor(OutcomeClassifier())
        self.store = store
        self.renderer = renderer or StatusRenderer()
        self.rng = rng or random.Random()
        self.samples_dir = samples_dir
        self.runs_dir = runs_dir
        self.stats_dir = stats_dir
        self.mutants_per_sample = mutants_per_sample or settings.mutants_per_sample
        self.status_every_n_mutants = status_every_n_mutants or settings.status_every_n_mutants
        self.max_iterations = max_iterations
        self.layout = RunLayout(run_tag or RunLayout.new_run_tag(), self.runs_dir)

        self.counters = Counters.for_codes(self.executor.classifier.intentional_codes)
        self.corpus: Optional[CorpusManager] = None
        self.snapshotter: Optional[StatsSnapshotter] = None
        self.iterations = 0
        self._stop_requested = False
        self._previous_handlers: Dict[int, object] = {}

    # ------------------------------------------------------------------
    # Shutdown signalling
    # ------------------------------------------------------------------

    def request_stop(self, signum: Optional[int] = None, frame=None) -> None:
        if not self._stop_requested:
            logger.info("driver_stop_requested", signal=signum)
        self._stop_requested = True

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def install_signal_handlers(self) -> None:
        for signum in _SHUTDOWN_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self.request_stop)

    def restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def _should_continue(self) -> bool:
        if self._stop_requested:
            return False
        if self.max_iterations is not None and self.iterations >= self.max_iterations:
            return False
        return True

    def render_status(self) -> None:
        if self.snapshotter is None:
            return
        self.renderer.render(self.snapshotter.capture(self.counters))

    def step(self, sample: Path) -> Optional[TrialResult]:
        """One trial against ``sample``; returns None when no trial happened."""
        self.iterations += 1
        mutant = self.layout.mutant_path(sample)
        seed = self.rng.randrange(_SEED_RANGE)

        with self.corpus.mutant_scope(mutant, self.counters):
            result = self.executor.run_trial(sample, mutant, seed)
            if result is None:
                return None
            self.counters.total_mutants += 1
            self.corpus.record(result.outcome, result.mutant, self.counters)

        if self.counters.total_mutants % self.status_every_n_mutants == 0:
            self.render_status()
        self.snapshotter.maybe_snapshot(self.counters)
        return result

    def loop(self, samples: List[Path]) -> None:
        """Cycle the sample set until stopped."""
        for sample in itertools.cycle(samples):
            for _ in range(self.mutants_per_sample):
                if not self._should_continue():
                    return
                self.step(sample)

    def shutdown(self) -> None:
        """Final snapshot and state record. Runs on every exit path."""
        logger.info("driver_exit", run_tag=self.layout.run_tag, total_mutants=self.counters.total_mutants)
        try:
            if self.snapshotter is not None:
                self.snapshotter.snapshot(self.counters)
        finally:
            if self.session and self.store is not None:
                self.store.set(self.session, SessionState.STOPPED)
                logger.info("session_marked_stopped", session=self.session)

    def run(self) -> int:
        """
        Run the loop.

        Returns:
            Process exit status (0 after a signal-triggered shutdown)

        Raises:
            ConfigurationError: tools missing or no samples, before the loop starts
        """
        self.install_signal_handlers()
        try:
            self.executor.verify_tools()
            samples = discover_samples(self.samples_dir)
            self.counters.total_samples = len(samples)

            with open_run(self.layout) as layout:
                self.corpus = CorpusManager(layout)
                self.snapshotter = StatsSnapshotter(
                    layout.run_tag,
                    layout.run_dir,
                    stats_dir=self.stats_dir,
                    intentional_codes=self.executor.classifier.intentional_codes,
                    mutants_per_sample=self.mutants_per_sample,
                )
                logger.info(
                    "driver_started",
                    samples=len(samples),
                    run_dir=str(layout.run_dir),
                    session=self.session,
                )
                self.render_status()
                self.loop(samples)
        finally:
            try:
                self.shutdown()
            finally:
                self.restore_signal_handlers()
        return 0
