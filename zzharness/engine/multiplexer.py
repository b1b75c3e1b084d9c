"""
Terminal multiplexer collaborator.

Sessions live in detached tmux sessions so a fuzz run survives the operator's
terminal going away. This module is the only place that talks to tmux, and
the only place that delivers ControlSignal messages to a session's processes.

The pane of a session runs a shell whose child is the driver; the driver's
children are the mutator and target invocations. That process tree is the
session's process group for control purposes:

- SUSPEND / RESUME go to every descendant of the pane, so the target and the
  driver's deadline clock freeze together.
- INTERRUPT goes to the driver only (the pane's direct children) and is
  followed by RESUME so a suspended driver can still run its shutdown path.
"""
import os
import shlex
import shutil
import subprocess
from typing import List, Optional, Sequence

import psutil
import structlog

from zzharness.exceptions import MultiplexerError
from zzharness.models import ControlSignal

logger = structlog.get_logger()


class TmuxMultiplexer:
    """Thin wrapper over the tmux binary"""

    def __init__(self, tmux_bin: str = "tmux"):
        self.tmux_bin = tmux_bin

    def available(self) -> bool:
        return shutil.which(self.tmux_bin) is not None

    def _run(self, *args: str) -> subprocess.CompletedProcess:
        return subprocess.run(
            [self.tmux_bin, *args],
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
        )

    def has_session(self, name: str) -> bool:
        try:
            return self._run("has-session", "-t", f"={name}").returncode == 0
        except OSError:
            return False

    def list_sessions(self, prefix: Optional[str] = None) -> List[str]:
        """Names of live tmux sessions, optionally filtered by prefix."""
        try:
            result = self._run("list-sessions", "-F", "#{session_name}")
        except OSError:
            return []
        if result.returncode != 0:
            # tmux exits non-zero when no server is running
            return []
        names = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        if prefix:
            names = [name for name in names if name.startswith(f"{prefix}_")]
        return names

    def new_session(self, name: str, argv: Sequence[str]) -> None:
        """Start ``argv`` in a detached session.

        The pane drops into an interactive shell after the command exits so
        the final output stays readable on attach.
        """
        command = f"{shlex.join(argv)}; exec bash"
        try:
            result = self._run("new-session", "-d", "-s", name, "bash", "-lc", command)
        except OSError as exc:
            raise MultiplexerError(f"Failed to run tmux: {exc}") from exc
        if result.returncode != 0:
            raise MultiplexerError(
                f"tmux refused to create session '{name}'",
                {"returncode": result.returncode},
            )
        logger.info("tmux_session_created", session=name, command=command)

    def pane_pid(self, name: str) -> Optional[int]:
        try:
            result = self._run("list-panes", "-t", f"={name}", "-F", "#{pane_pid}")
        except OSError:
            return None
        if result.returncode != 0:
            return None
        for line in result.stdout.splitlines():
            line = line.strip()
            if line.isdigit():
                return int(line)
        return None

    def attach(self, name: str) -> None:
        """Replace the current process with ``tmux attach``."""
        os.execvp(self.tmux_bin, [self.tmux_bin, "attach", "-t", name])

    def _session_processes(self, name: str, recursive: bool) -> List[psutil.Process]:
        pid = self.pane_pid(name)
        if pid is None:
            return []
        try:
            return psutil.Process(pid).children(recursive=recursive)
        except psutil.NoSuchProcess:
            return []

    def send_signal(self, name: str, message: ControlSignal) -> int:
        """Deliver a control message to the session; returns processes reached."""
        recursive = message is not ControlSignal.INTERRUPT
        delivered = 0
        for proc in self._session_processes(name, recursive=recursive):
            try:
                proc.send_signal(message.signum)
                delivered += 1
            except (psutil.NoSuchProcess, psutil.AccessDenied) as exc:
                logger.warning(
                    "signal_delivery_failed",
                    session=name,
                    pid=proc.pid,
                    message=message.value,
                    error=str(exc),
                )

        if message is ControlSignal.INTERRUPT:
            self.send_signal(name, ControlSignal.RESUME)

        logger.debug("control_signal_sent", session=name, message=message.value, delivered=delivered)
        return delivered
