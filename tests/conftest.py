"""Shared fixtures: sample sets, stand-in binaries and a fake tmux."""
import shutil
import sys
from io import StringIO
from pathlib import Path
from typing import List, Optional

import pytest
from rich.console import Console

from zzharness.display import StatusRenderer
from zzharness.engine.state_store import StateStore

SH = shutil.which("sh") or "/bin/sh"
CAT = shutil.which("cat") or "/bin/cat"

# Mutator that copies the sample unchanged
COPY_MUTATOR = [CAT]
FAILING_MUTATOR = [SH, "-c", "exit 1"]


def exit_target(code: int) -> List[str]:
    """Target that exits with ``code`` regardless of its input."""
    return [SH, "-c", f"exit {code}", "target", "{input}"]


def python_target(source: str) -> List[str]:
    return [sys.executable, "-c", source, "{input}"]


class FakeMultiplexer:
    """In-memory stand-in for TmuxMultiplexer"""

    def __init__(self, available: bool = True):
        self.is_available = available
        self.sessions = set()
        self.launched = []
        self.signals = []
        self.attached = []
        self.on_launch = None
        self.launch_error = None

    def available(self) -> bool:
        return self.is_available

    def has_session(self, name: str) -> bool:
        return name in self.sessions

    def list_sessions(self, prefix: Optional[str] = None) -> List[str]:
        return sorted(n for n in self.sessions if not prefix or n.startswith(f"{prefix}_"))

    def new_session(self, name, argv) -> None:
        if self.launch_error is not None:
            raise self.launch_error
        self.sessions.add(name)
        self.launched.append((name, list(argv)))
        if self.on_launch is not None:
            self.on_launch(name)

    def send_signal(self, name, message) -> int:
        self.signals.append((name, message))
        return 1

    def attach(self, name) -> None:
        self.attached.append(name)

    def kill(self, name) -> None:
        self.sessions.discard(name)


@pytest.fixture
def samples_dir(tmp_path) -> Path:
    directory = tmp_path / "samples"
    directory.mkdir()
    for name in ("b_clip.ivf", "a_clip.ivf"):
        (directory / name).write_bytes(b"DKIF" + bytes(range(64)))
    (directory / "notes.txt").write_text("not a sample")
    return directory


@pytest.fixture
def store(tmp_path) -> StateStore:
    return StateStore(tmp_path / "state" / "sessions.db")


@pytest.fixture
def multiplexer() -> FakeMultiplexer:
    return FakeMultiplexer()


@pytest.fixture
def quiet_renderer() -> StatusRenderer:
    return StatusRenderer(Console(file=StringIO(), width=120), clear=False)
