"""
Session Controller - lifecycle commands for named fuzzing sessions.

Component Overview:
-------------------
Each management command (start, pause, continue, stop, list, attach) runs in
its own short-lived process. The controller maps the command onto a state
transition recorded in the StateStore and, where needed, a ControlSignal
delivered to the session's process group through the multiplexer. It never
shares memory with the driver it controls.

State Machine:
-------------
    start             -> RUNNING
    RUNNING  --pause-->    PAUSED     (SIGSTOP to the process group)
    PAUSED   --continue--> RUNNING    (SIGCONT to the process group)
    RUNNING|PAUSED --stop--> STOPPED  (SIGINT, grace period, then recorded)

STOPPED is terminal. UNKNOWN (no record) is treated as RUNNING while the
process group is alive.

Liveness:
--------
Whether the tmux session exists is ground truth. pause/continue/stop/attach
fail with SessionNotFoundError when it is gone, whatever the store says, and
list reports STOPPED for any session that is not alive.
"""
from __future__ import annotations

import sys
import time
from datetime import datetime
from typing import Callable, List, Optional, Sequence

import structlog

from zzharness.config import settings
from zzharness.engine.multiplexer import TmuxMultiplexer
from zzharness.engine.state_store import StateStore
from zzharness.exceptions import (
    ConfigurationError,
    InvalidTransitionError,
    MultiplexerError,
    SessionNotFoundError,
)
from zzharness.models import (
    ControlSignal,
    SessionInfo,
    SessionState,
    TransitionResult,
)

logger = structlog.get_logger()


class SessionController:
    """
    Maps lifecycle commands onto state transitions and process-group signals.
    """

    def __init__(
        self,
        store: Optional[StateStore] = None,
        multiplexer: Optional[TmuxMultiplexer] = None,
        session_prefix: Optional[str] = None,
        stop_grace_sec: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store or StateStore()
        self.multiplexer = multiplexer or TmuxMultiplexer()
        self.session_prefix = session_prefix or settings.session_prefix
        self.stop_grace_sec = settings.stop_grace_sec if stop_grace_sec is None else stop_grace_sec
        self._sleep = sleep
        self._clock = clock

    def new_session_name(self) -> str:
        return f"{self.session_prefix}_{self._clock():%Y%m%d_%H%M%S}"

    def driver_command(self, session: str) -> List[str]:
        """argv that runs the fuzz loop for ``session`` inside the pane."""
        return [sys.executable, "-m", "zzharness", "run", "--session", session]

    def start(self, driver_argv: Optional[Sequence[str]] = None) -> str:
        """
        Launch a new detached session running the fuzz loop.

        Returns:
            The new session's name
        """
        if not self.multiplexer.available():
            raise ConfigurationError("tmux is required for detached sessions")

        session = self.new_session_name()
        argv = list(driver_argv) if driver_argv else self.driver_command(session)
        # written before launch; a driver that exits at once overwrites it with STOPPED
        self.store.set(session, SessionState.RUNNING)
        try:
            self.multiplexer.new_session(session, argv)
        except MultiplexerError:
            self.store.set(session, SessionState.STOPPED)
            raise
        logger.info("session_started", session=session)
        return session

    def _require_alive(self, session: str) -> None:
        if not self.multiplexer.has_session(session):
            logger.warning("session_not_found", session=session)
            raise SessionNotFoundError(session)

    def pause(self, session: str) -> TransitionResult:
        self._require_alive(session)
        state = self.store.get(session)

        if state == SessionState.PAUSED:
            warning = f"Session '{session}' is already paused"
            logger.warning("session_already_paused", session=session)
            return TransitionResult(
                session=session, previous=state, state=state, changed=False, warning=warning
            )

        if state == SessionState.STOPPED:
            raise InvalidTransitionError(
                "Cannot pause a stopped session", state.value, "pause"
            )

        self.multiplexer.send_signal(session, ControlSignal.SUSPEND)
        self.store.set(session, SessionState.PAUSED)
        logger.info("session_paused", session=session, previous=state.value)
        return TransitionResult(session=session, previous=state, state=SessionState.PAUSED)

    def resume(self, session: str) -> TransitionResult:
        """Continue a paused session."""
        self._require_alive(session)
        state = self.store.get(session)

        if state == SessionState.STOPPED:
            raise InvalidTransitionError(
                "Cannot continue a stopped session. Start a new one instead.",
                state.value,
                "continue",
            )

        if state != SessionState.PAUSED:
            warning = f"Session '{session}' is not paused (state: {state.value})"
            logger.warning("session_not_paused", session=session, state=state.value)
            return TransitionResult(
                session=session, previous=state, state=state, changed=False, warning=warning
            )

        self.multiplexer.send_signal(session, ControlSignal.RESUME)
        self.store.set(session, SessionState.RUNNING)
        logger.info("session_resumed", session=session)
        return TransitionResult(session=session, previous=state, state=SessionState.RUNNING)

    def stop(self, session: str) -> TransitionResult:
        """
        Interrupt the session's driver and record it as stopped.

        The record is written after the grace period whether or not the
        driver actually exited; the driver's own exit handler may write the
        same state first.
        """
        self._require_alive(session)
        state = self.store.get(session)

        if state == SessionState.STOPPED:
            raise InvalidTransitionError(
                f"Session '{session}' is already stopped", state.value, "stop"
            )

        self.multiplexer.send_signal(session, ControlSignal.INTERRUPT)
        self._sleep(self.stop_grace_sec)
        self.store.set(session, SessionState.STOPPED)
        logger.info("session_stopped", session=session, previous=state.value)
        return TransitionResult(session=session, previous=state, state=SessionState.STOPPED)

    def attach(self, session: str) -> None:
        self._require_alive(session)
        logger.info("session_attach", session=session)
        self.multiplexer.attach(session)

    def list_sessions(self) -> List[SessionInfo]:
        """
        Reconcile recorded states with live tmux sessions.

        Covers both live sessions (even ones without a record) and recorded
        sessions whose tmux session has gone away.
        """
        live = set(self.multiplexer.list_sessions(self.session_prefix))
        recorded = self.store.all()

        sessions: List[SessionInfo] = []
        for name in sorted(live | set(recorded)):
            stored = recorded.get(name, SessionState.UNKNOWN)
            alive = name in live
            sessions.append(
                SessionInfo(
                    name=name,
                    stored_state=stored,
                    alive=alive,
                    display_state=self.display_state(stored, alive),
                )
            )
        return sessions

    @staticmethod
    def display_state(stored: SessionState, alive: bool) -> SessionState:
        if not alive:
            return SessionState.STOPPED
        if stored == SessionState.UNKNOWN:
            return SessionState.RUNNING
        return stored
