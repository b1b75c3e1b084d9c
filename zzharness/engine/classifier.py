"""Exit status -> Outcome classification."""
from typing import Iterable, Optional

import structlog

from zzharness.config import settings
from zzharness.models import ExitStatus, Outcome

logger = structlog.get_logger()


def exit_byte(code: int) -> int:
    """Exit code as the OS reports it (``return -12`` from main exits with 244)."""
    return code & 0xFF


class OutcomeClassifier:
    """
    Total function of (exit status, timed out, recognized codes).

    Recognized codes are configured the way the target's authors write them,
    negative values included. Signal terminations only match a recognized
    code ``-N`` when ``signals_as_intentional`` is enabled; otherwise every
    signal death is a crash.
    """

    def __init__(
        self,
        intentional_codes: Optional[Iterable[int]] = None,
        signals_as_intentional: Optional[bool] = None,
    ):
        codes = settings.intentional_codes if intentional_codes is None else intentional_codes
        self.intentional_codes = list(codes)
        self.signals_as_intentional = (
            settings.signals_as_intentional
            if signals_as_intentional is None
            else signals_as_intentional
        )
        # first configured code wins when two normalise to the same byte
        self._by_exit_byte = {}
        for code in self.intentional_codes:
            if code == 0:
                continue
            self._by_exit_byte.setdefault(exit_byte(code), code)

    def match(self, status: ExitStatus) -> Optional[int]:
        """Configured code recognized for ``status``, if any."""
        if status.signal is not None:
            if self.signals_as_intentional and -status.signal in self.intentional_codes:
                return -status.signal
            return None
        if status.returncode is None or status.returncode == 0:
            return None
        return self._by_exit_byte.get(exit_byte(status.returncode))

    def classify(self, status: Optional[ExitStatus], timed_out: bool = False) -> Outcome:
        if timed_out:
            return Outcome.hang()
        if status is None:
            raise ValueError("exit status is required unless the trial timed out")
        if status.success:
            return Outcome.normal()

        code = self.match(status)
        if code is not None:
            return Outcome.intentional(code)

        if status.signal is not None:
            return Outcome.crash(-status.signal)
        return Outcome.crash(status.returncode)
