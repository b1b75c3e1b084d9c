"""
Custom Exception Hierarchy for the harness

Management commands surface these to the operator; the fuzz loop recovers
from the per-trial ones locally. All custom exceptions inherit from
HarnessError.
"""
from typing import Optional


class HarnessError(Exception):
    """
    Base exception for all harness-specific errors.

    Allows catching every harness error with a single except clause
    (the CLI does exactly that to map errors to exit status 1).
    """
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# Configuration and Initialization Errors

class ConfigurationError(HarnessError):
    """
    Fatal setup problem detected before the fuzz loop starts.

    Examples: no samples found, mutator or target binary missing,
    tmux unavailable for a detached session.
    """
    pass


# Session Management Errors

class SessionError(HarnessError):
    """
    Session lifecycle errors.

    Base class for management command failures.
    """
    pass


class SessionNotFoundError(SessionError):
    """Named session's process group is not alive."""
    def __init__(self, session: str):
        super().__init__(f"Session '{session}' does not exist", {"session": session})
        self.session = session


class InvalidTransitionError(SessionError):
    """Lifecycle command is illegal for the session's current state."""
    def __init__(self, message: str, current_state: str, requested: str):
        super().__init__(message, {"current_state": current_state, "requested": requested})
        self.current_state = current_state
        self.requested = requested


# Mutation Errors

class MutationError(HarnessError):
    """
    Mutator failures.

    Recovered per trial: the trial is skipped and no counter changes.
    """
    pass


class MutationFailedError(MutationError):
    """Mutator exited non-zero or could not be started."""
    pass


# Corpus and Storage Errors

class CorpusError(HarnessError):
    """
    Run directory and artifact persistence errors.
    """
    pass


class ArtifactCopyError(CorpusError):
    """Failed to copy a mutant into its category directory."""
    pass


# Terminal multiplexer

class MultiplexerError(HarnessError):
    """tmux invocation failed."""
    pass
