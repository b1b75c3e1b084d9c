"""
Core configuration management
"""
from pathlib import Path
from typing import List
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Harness settings"""

    # Paths
    state_dir: Path = Path.home() / ".zzharness_sessions"
    samples_dir: Path = Path("samples")
    sample_glob: str = "*.ivf"
    runs_dir: Path = Path("runs")
    stats_dir: Path = Path("stats")
    log_dir: Path = Path("logs")

    # External tools. Placeholders are filled per trial.
    mutator_command: List[str] = ["zzuf", "-r", "{ratio}", "-s", "{seed}"]
    target_command: List[str] = ["./dav1d", "-i", "{input}", "-o", "{output}"]
    target_output: str = "file.null"

    # Fuzzing loop
    mutation_ratio: float = 0.01
    timeout_sec: float = 5.0
    mutants_per_sample: int = 50
    delete_after_run: bool = True
    max_mutants_keep: int = 2000
    poll_interval_sec: float = 0.05

    # Outcome classification
    intentional_codes: List[int] = [50, -12, -22, 1, -1]
    intentional_limit: int = 5000
    signals_as_intentional: bool = False  # treat returncode -N as recognized code -N

    # Reporting
    status_every_n_mutants: int = 100
    stats_rotate_minutes: float = 10

    # Sessions
    session_prefix: str = "fuzz"
    stop_grace_sec: float = 2.0

    class Config:
        env_prefix = "ZZHARNESS_"
        env_file = ".env"


settings = Settings()
