"""
Corpus Store - samples in, interesting mutants out.

This module provides the storage layer of a run: the immutable sample set
the mutator works from and the per-run directory tree that keeps mutants
worth looking at.

Storage Layout:
--------------
    runs/
    └── <run_tag>/
        ├── mutants/               # transient mutants, one per trial
        ├── crashed/               # every crash reproducer
        ├── hanging/               # every hang reproducer
        └── intentional/
            └── <code>/            # capped per code

Retention Rules:
---------------
- NORMAL: nothing kept.
- INTENTIONAL(code): copied while fewer than ``intentional_limit`` artifacts
  for that code are on disk; the code's counter increments either way.
- CRASH / HANG: always copied, always counted.
- Any non-NORMAL outcome moves ``last_discovery_time`` to now.

A failed copy is logged and swallowed. Counters are still updated, and the
loop keeps going.

Mutant names carry a random suffix, so concurrent writers into these
directories never collide.
"""
import shutil
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional

import structlog

from zzharness.config import settings
from zzharness.exceptions import ArtifactCopyError, ConfigurationError
from zzharness.models import Counters, Outcome, OutcomeKind

logger = structlog.get_logger()

MUTANTS_SUB = "mutants"
CRASH_SUB = "crashed"
HANG_SUB = "hanging"
INTENTIONAL_SUB = "intentional"


def discover_samples(samples_dir: Optional[Path] = None, pattern: Optional[str] = None) -> List[Path]:
    """
    Sorted list of sample files directly under ``samples_dir``.

    Raises:
        ConfigurationError: if the directory is missing or holds no samples
    """
    samples_dir = Path(samples_dir or settings.samples_dir)
    pattern = pattern or settings.sample_glob
    if not samples_dir.is_dir():
        raise ConfigurationError(f"Samples directory {samples_dir} does not exist")

    samples = sorted(p for p in samples_dir.glob(pattern) if p.is_file())
    if not samples:
        raise ConfigurationError(f"No {pattern} files in {samples_dir}")
    return samples


class RunLayout:
    """Directory tree of one run"""

    def __init__(self, run_tag: str, runs_dir: Optional[Path] = None):
        self.run_tag = run_tag
        self.run_dir = Path(runs_dir or settings.runs_dir) / run_tag
        self.mutants_dir = self.run_dir / MUTANTS_SUB
        self.crash_dir = self.run_dir / CRASH_SUB
        self.hang_dir = self.run_dir / HANG_SUB
        self.intentional_dir = self.run_dir / INTENTIONAL_SUB

    @staticmethod
    def new_run_tag(now: Optional[datetime] = None) -> str:
        return f"run_{(now or datetime.now()):%Y%m%d_%H%M%S}"

    def create(self) -> "RunLayout":
        for directory in (self.mutants_dir, self.crash_dir, self.hang_dir, self.intentional_dir):
            directory.mkdir(parents=True, exist_ok=True)
        return self

    def intentional_code_dir(self, code: int) -> Path:
        return self.intentional_dir / str(code)

    def mutant_path(self, sample: Path) -> Path:
        """Fresh, trial-unique mutant path derived from ``sample``."""
        return self.mutants_dir / f"{sample.stem}_{uuid.uuid4().hex[:12]}{sample.suffix}"

    def release(self) -> None:
        """Drop the scratch mutants directory if nothing was retained in it."""
        try:
            self.mutants_dir.rmdir()
        except OSError:
            pass


@contextmanager
def open_run(layout: RunLayout) -> Iterator[RunLayout]:
    """Create the run tree and release its scratch space on every exit path."""
    layout.create()
    logger.info("run_directory_ready", run_dir=str(layout.run_dir))
    try:
        yield layout
    finally:
        layout.release()


class CorpusManager:
    """
    Persists interesting mutants under the run's category directories and
    updates the run's counters.
    """

    def __init__(
        self,
        layout: RunLayout,
        intentional_limit: Optional[int] = None,
        delete_after_run: Optional[bool] = None,
        max_mutants_keep: Optional[int] = None,
    ):
        self.layout = layout
        self.intentional_limit = (
            settings.intentional_limit if intentional_limit is None else intentional_limit
        )
        self.delete_after_run = (
            settings.delete_after_run if delete_after_run is None else delete_after_run
        )
        self.max_mutants_keep = (
            settings.max_mutants_keep if max_mutants_keep is None else max_mutants_keep
        )

    @staticmethod
    def copy_artifact(mutant: Path, dest_dir: Path) -> Path:
        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
            return Path(shutil.copy2(mutant, dest_dir / mutant.name))
        except OSError as exc:
            raise ArtifactCopyError(
                f"Failed to copy {mutant.name} to {dest_dir}",
                {"error": str(exc)},
            ) from exc

    def _copy_artifact(self, mutant: Path, dest_dir: Path) -> Optional[Path]:
        try:
            return self.copy_artifact(mutant, dest_dir)
        except ArtifactCopyError as exc:
            logger.error(
                "artifact_copy_failed",
                mutant=str(mutant),
                dest=str(dest_dir),
                error=exc.details.get("error"),
            )
            return None

    def record(self, outcome: Outcome, mutant: Path, counters: Counters) -> Optional[Path]:
        """
        Apply the retention rules for one classified trial.

        Args:
            outcome: Classified trial outcome
            mutant: Path of the trial's mutant
            counters: The run's counters, updated in place

        Returns:
            Path of the retained copy, if one was written
        """
        if not outcome.is_discovery:
            return None

        kept: Optional[Path] = None
        if outcome.kind == OutcomeKind.HANG:
            kept = self._copy_artifact(mutant, self.layout.hang_dir)
            counters.hangs += 1
            logger.info("trial_hang", mutant=mutant.name, kept=kept is not None)

        elif outcome.kind == OutcomeKind.CRASH:
            kept = self._copy_artifact(mutant, self.layout.crash_dir)
            counters.crashes += 1
            logger.info("trial_crash", mutant=mutant.name, code=outcome.code, kept=kept is not None)

        elif outcome.kind == OutcomeKind.INTENTIONAL:
            code = outcome.code
            retained = counters.retained_intentional.get(code, 0)
            if retained < self.intentional_limit:
                kept = self._copy_artifact(mutant, self.layout.intentional_code_dir(code))
                if kept is not None:
                    counters.retained_intentional[code] = retained + 1
            counters.intentional_counts[code] = counters.intentional_counts.get(code, 0) + 1
            logger.debug("trial_intentional_exit", mutant=mutant.name, code=code, kept=kept is not None)

        counters.last_discovery_time = datetime.now()
        return kept

    def should_retain_mutant(self, counters: Counters) -> bool:
        """Whether this trial's mutant may stay in ``mutants/``."""
        if self.delete_after_run:
            return False
        return counters.retained_mutants < self.max_mutants_keep

    @contextmanager
    def mutant_scope(self, mutant: Path, counters: Counters) -> Iterator[Path]:
        """
        Own a trial's mutant file for the duration of the trial.

        The file is deleted on every exit path (interrupts included) unless
        retention is enabled and the retention cap has room.
        """
        try:
            yield mutant
        finally:
            if mutant.exists() and self.should_retain_mutant(counters):
                counters.retained_mutants += 1
            else:
                try:
                    mutant.unlink()
                except FileNotFoundError:
                    pass
                except OSError as exc:
                    logger.warning("mutant_cleanup_failed", mutant=str(mutant), error=str(exc))
