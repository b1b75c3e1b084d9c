"""tmux-persistent mutation fuzzing harness"""

__version__ = "0.1.0"
