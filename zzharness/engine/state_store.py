"""
Session state persistence - SQLite-backed record of every named session.

The controller (a short-lived management command) and the driver's exit
handler run in different processes, so the state record has to live on disk.
One row per session, keyed by session name. Reads of a missing row return
SessionState.UNKNOWN instead of raising.
"""
import sqlite3
import time
from pathlib import Path
from typing import Dict, Optional

import structlog

from zzharness.config import settings
from zzharness.models import SessionState

logger = structlog.get_logger()


class StateStore:
    """
    Durable session name -> SessionState mapping.

    Each call opens its own connection, so any number of management
    commands can read concurrently while the owning controller or driver
    writes. Writes are upserts; the last writer wins.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else settings.state_dir / "sessions.db"
        self._init_database()
        logger.debug("state_store_initialized", db_path=str(self.db_path))

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path), timeout=10.0)

    def _init_database(self):
        """Create database schema if it doesn't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS session_state (
                    name TEXT PRIMARY KEY,
                    state TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def get(self, session: str) -> SessionState:
        """Return the recorded state, or UNKNOWN when there is no record."""
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT state FROM session_state WHERE name = ?",
                (session,),
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            return SessionState.UNKNOWN
        try:
            return SessionState(row[0])
        except ValueError:
            logger.warning("unrecognized_session_state", session=session, state=row[0])
            return SessionState.UNKNOWN

    def set(self, session: str, state: SessionState) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO session_state (name, state, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    state = excluded.state,
                    updated_at = excluded.updated_at
                """,
                (session, state.value, time.time()),
            )
            conn.commit()
        finally:
            conn.close()
        logger.debug("session_state_saved", session=session, state=state.value)

    def all(self) -> Dict[str, SessionState]:
        """Every recorded session and its state."""
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT name, state FROM session_state ORDER BY name"
            ).fetchall()
        finally:
            conn.close()

        result: Dict[str, SessionState] = {}
        for name, state in rows:
            try:
                result[name] = SessionState(state)
            except ValueError:
                result[name] = SessionState.UNKNOWN
        return result
