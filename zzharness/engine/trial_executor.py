"""
Trial Executor - one mutate-then-execute attempt against a single sample.

Component Overview:
-------------------
A trial has two external steps:
1. The mutator reads the sample on stdin and writes the mutant on stdout.
   A non-zero exit (or a mutator that cannot be started) means there is no
   trial at all: the mutant is removed and ``run_trial`` returns None.
2. The target runs against the mutant under a hard deadline. It runs in its
   own process group so a timeout can kill everything it spawned.

Deadline accounting:
-------------------
The deadline is charged in poll-sized slices. When the whole session is
suspended (SIGSTOP from a ``pause``) the gap between two polls is far longer
than a slice; only a bounded amount of such a gap is charged, so a paused
session does not turn the running trial into a hang once resumed.

Usage Example:
-------------
    executor = TrialExecutor(OutcomeClassifier())
    result = executor.run_trial(sample, mutant, seed=1234)
    if result is None:
        ...  # mutation failed, nothing to count
    elif result.outcome.kind == OutcomeKind.HANG:
        ...
"""
from __future__ import annotations

import os
import shutil
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

import structlog

from zzharness.config import settings
from zzharness.engine.classifier import OutcomeClassifier
from zzharness.exceptions import ConfigurationError, MutationFailedError
from zzharness.models import ExitStatus, Outcome

logger = structlog.get_logger()

# Largest poll gap, in poll intervals, charged against a trial's deadline.
_MAX_CHARGED_GAP = 4


@dataclass
class TrialResult:
    """Result of one completed trial"""

    outcome: Outcome
    mutant: Path
    status: Optional[ExitStatus]
    elapsed_sec: float

    @property
    def timed_out(self) -> bool:
        return self.status is None


def fill_placeholders(template: Sequence[str], **values: object) -> List[str]:
    """Substitute ``{name}`` placeholders without touching other braces."""
    argv = []
    for arg in template:
        for key, value in values.items():
            arg = arg.replace("{" + key + "}", str(value))
        argv.append(arg)
    return argv


def resolve_executable(program: str) -> Optional[str]:
    if os.sep in program:
        if os.path.isfile(program) and os.access(program, os.X_OK):
            return program
        return None
    return shutil.which(program)


class TrialExecutor:
    """
    Runs the external mutator and target for one trial and classifies the
    target's exit.
    """

    def __init__(
        self,
        classifier: Optional[OutcomeClassifier] = None,
        mutator_command: Optional[Sequence[str]] = None,
        target_command: Optional[Sequence[str]] = None,
        target_output: Optional[str] = None,
        timeout_sec: Optional[float] = None,
        poll_interval_sec: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.classifier = classifier or OutcomeClassifier()
        self.mutator_command = list(mutator_command or settings.mutator_command)
        self.target_command = list(target_command or settings.target_command)
        self.target_output = target_output or settings.target_output
        self.timeout_sec = settings.timeout_sec if timeout_sec is None else timeout_sec
        self.poll_interval_sec = poll_interval_sec or settings.poll_interval_sec
        self._clock = clock

    def verify_tools(self) -> None:
        """
        Raises:
            ConfigurationError: if the mutator or target cannot be executed
        """
        for role, command in (("mutator", self.mutator_command), ("target", self.target_command)):
            if not command:
                raise ConfigurationError(f"No {role} command configured")
            if resolve_executable(command[0]) is None:
                raise ConfigurationError(f"{role} '{command[0]}' not found or not executable")

    def mutate(self, sample: Path, mutant: Path, seed: int, ratio: float) -> None:
        """
        Write one mutant of ``sample`` to ``mutant``.

        Raises:
            MutationFailedError: if the mutator fails; the mutant is removed
        """
        argv = fill_placeholders(self.mutator_command, ratio=ratio, seed=seed)
        try:
            with open(sample, "rb") as src, open(mutant, "wb") as dst:
                result = subprocess.run(argv, stdin=src, stdout=dst, stderr=subprocess.DEVNULL)
        except OSError as exc:
            mutant.unlink(missing_ok=True)
            raise MutationFailedError(f"Mutator could not run: {exc}", {"argv": argv}) from exc

        if result.returncode != 0:
            mutant.unlink(missing_ok=True)
            raise MutationFailedError(
                f"Mutator exited with {result.returncode}",
                {"argv": argv, "returncode": result.returncode},
            )

    def _wait(self, proc: subprocess.Popen, timeout: float) -> bool:
        """Wait for ``proc``; True if the deadline expired first."""
        charged = 0.0
        last = self._clock()
        while True:
            try:
                proc.wait(timeout=self.poll_interval_sec)
                return False
            except subprocess.TimeoutExpired:
                now = self._clock()
                charged += min(now - last, self.poll_interval_sec * _MAX_CHARGED_GAP)
                last = now
                if charged >= timeout:
                    return True

    @staticmethod
    def _kill_group(proc: subprocess.Popen) -> None:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        proc.wait()

    def execute(self, mutant: Path, timeout: float) -> Tuple[Optional[ExitStatus], float]:
        """
        Run the target against ``mutant``.

        Returns:
            (exit status or None on timeout, elapsed seconds)

        Raises:
            ConfigurationError: if the target cannot be started at all
        """
        argv = fill_placeholders(self.target_command, input=mutant, output=self.target_output)
        start = time.monotonic()
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as exc:
            raise ConfigurationError(
                f"Target '{argv[0]}' could not be executed: {exc}", {"argv": argv}
            ) from exc
        try:
            timed_out = self._wait(proc, timeout)
        except BaseException:
            self._kill_group(proc)
            raise

        if timed_out:
            self._kill_group(proc)
            return None, time.monotonic() - start
        return ExitStatus.from_returncode(proc.returncode), time.monotonic() - start

    def run_trial(
        self,
        sample: Path,
        mutant: Path,
        seed: int,
        ratio: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> Optional[TrialResult]:
        """
        Mutate ``sample`` into ``mutant`` and run the target on it.

        Returns:
            TrialResult, or None when the mutator failed (no trial happened)
        """
        ratio = settings.mutation_ratio if ratio is None else ratio
        timeout = self.timeout_sec if timeout is None else timeout

        try:
            self.mutate(sample, mutant, seed, ratio)
        except MutationFailedError as exc:
            logger.debug("mutation_failed", sample=sample.name, seed=seed, error=exc.message)
            return None

        status, elapsed = self.execute(mutant, timeout)
        outcome = self.classifier.classify(status, timed_out=status is None)
        if status is None:
            logger.debug("trial_timed_out", mutant=mutant.name, timeout=timeout)
        return TrialResult(outcome=outcome, mutant=mutant, status=status, elapsed_sec=elapsed)
