"""
Core data models
"""
import signal as _signal
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class SessionState(str, Enum):
    """Lifecycle state of a named fuzzing session"""

    UNKNOWN = "unknown"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


class ControlSignal(str, Enum):
    """Messages the controller sends to a session's process group"""

    SUSPEND = "suspend"
    RESUME = "resume"
    INTERRUPT = "interrupt"

    @property
    def signum(self) -> int:
        return {
            ControlSignal.SUSPEND: _signal.SIGSTOP,
            ControlSignal.RESUME: _signal.SIGCONT,
            ControlSignal.INTERRUPT: _signal.SIGINT,
        }[self]


class OutcomeKind(str, Enum):
    """Trial classification"""

    NORMAL = "normal"
    INTENTIONAL = "intentional"
    CRASH = "crash"
    HANG = "hang"


class ExitStatus(BaseModel):
    """How a target invocation ended: an exit code or a terminating signal"""

    model_config = {"frozen": True}

    returncode: Optional[int] = None
    signal: Optional[int] = None

    @classmethod
    def from_returncode(cls, returncode: int) -> "ExitStatus":
        """Build from a subprocess returncode (negative means killed by signal)."""
        if returncode < 0:
            return cls(signal=-returncode)
        return cls(returncode=returncode)

    @property
    def success(self) -> bool:
        return self.returncode == 0


class Outcome(BaseModel):
    """Classification of one completed trial"""

    model_config = {"frozen": True}

    kind: OutcomeKind
    code: Optional[int] = None

    @property
    def is_discovery(self) -> bool:
        return self.kind != OutcomeKind.NORMAL

    @classmethod
    def normal(cls) -> "Outcome":
        return cls(kind=OutcomeKind.NORMAL)

    @classmethod
    def intentional(cls, code: int) -> "Outcome":
        return cls(kind=OutcomeKind.INTENTIONAL, code=code)

    @classmethod
    def crash(cls, code: Optional[int] = None) -> "Outcome":
        return cls(kind=OutcomeKind.CRASH, code=code)

    @classmethod
    def hang(cls) -> "Outcome":
        return cls(kind=OutcomeKind.HANG)


class Counters(BaseModel):
    """Aggregate counters of one run, owned by the driver"""

    total_samples: int = 0
    total_mutants: int = 0
    crashes: int = 0
    hangs: int = 0
    intentional_counts: Dict[int, int] = Field(default_factory=dict)
    retained_intentional: Dict[int, int] = Field(default_factory=dict)
    retained_mutants: int = 0
    start_time: datetime = Field(default_factory=datetime.now)
    last_discovery_time: datetime = Field(default_factory=datetime.now)

    @classmethod
    def for_codes(cls, codes: List[int]) -> "Counters":
        now = datetime.now()
        return cls(
            intentional_counts={code: 0 for code in codes},
            retained_intentional={code: 0 for code in codes},
            start_time=now,
            last_discovery_time=now,
        )

    @property
    def findings(self) -> int:
        """Trials that produced anything other than a normal exit."""
        return sum(self.intentional_counts.values()) + self.crashes + self.hangs


class SnapshotRecord(BaseModel):
    """Point-in-time copy of a run's counters"""

    model_config = {"frozen": True}

    run_tag: str
    timestamp: datetime
    run_dir: Path
    counters: Counters
    runtime_sec: int
    since_last_discovery_sec: int
    mutation_ratio: float
    mutants_per_sample: int
    intentional_codes: List[int] = Field(default_factory=list)

    def render_text(self) -> str:
        """Human-readable snapshot file body."""
        lines = [
            f"=== zzuf fuzzing stats ({self.run_tag}) ===",
            f"Timestamp: {self.timestamp:%Y-%m-%d %H:%M:%S}",
            f"Run dir: {self.run_dir}",
            f"Total samples: {self.counters.total_samples}",
            f"Total mutants: {self.counters.total_mutants}",
            f"Crashes: {self.counters.crashes}",
            f"Hangs: {self.counters.hangs}",
        ]
        for code in self.intentional_codes:
            lines.append(f"Intentional code {code}: {self.counters.intentional_counts.get(code, 0)}")
        lines.extend([
            f"Runtime (s): {self.runtime_sec}",
            f"Mutation level: {self.mutation_ratio}",
            f"Mutants per sample: {self.mutants_per_sample}",
        ])
        return "\n".join(lines) + "\n"


class SessionInfo(BaseModel):
    """One row of the session listing"""

    name: str
    stored_state: SessionState
    alive: bool
    display_state: SessionState


class TransitionResult(BaseModel):
    """Result of a lifecycle command"""

    session: str
    previous: SessionState
    state: SessionState
    changed: bool = True
    warning: Optional[str] = None
