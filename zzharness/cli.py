"""
zzharness command line

    python -m zzharness                     # start a new detached fuzzing session
    python -m zzharness list                # list sessions and their states
    python -m zzharness attach <session>
    python -m zzharness pause <session>
    python -m zzharness continue <session>
    python -m zzharness stop <session>

``run`` is what a session's tmux pane executes; it runs the fuzz loop in the
foreground.
"""
import argparse
import logging
import sys
from typing import List, Optional

import structlog

from zzharness.display import render_sessions
from zzharness.engine.driver import FuzzDriver
from zzharness.engine.session_controller import SessionController
from zzharness.engine.state_store import StateStore
from zzharness.exceptions import HarnessError
from zzharness.logging import setup_logging
from zzharness.models import TransitionResult

logger = structlog.get_logger()

SESSION_COMMANDS = ("attach", "pause", "continue", "stop")
COMMANDS = ("start", "list", "run") + SESSION_COMMANDS


class _Parser(argparse.ArgumentParser):
    """Usage errors exit with status 1 like every other operator error."""

    def error(self, message: str):
        self.print_usage(sys.stderr)
        self.exit(1, f"[ERROR] {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(
        prog="zzharness",
        description="tmux-persistent mutation fuzzing harness with session management",
    )
    parser.add_argument("command", nargs="?", default="start", choices=COMMANDS)
    parser.add_argument("session", nargs="?", help="session name (attach/pause/continue/stop)")
    parser.add_argument(
        "--detach", action="store_true", help="start: do not attach to the new session"
    )
    parser.add_argument(
        "--session", dest="run_session", default=None, help="run: owning session name"
    )
    parser.add_argument(
        "--max-iterations", type=int, default=None, help="run: stop after N trial attempts"
    )
    parser.add_argument("--debug", action="store_true", help="verbose logging")
    return parser


def _report(result: TransitionResult, verb: str) -> int:
    if result.warning:
        print(f"[WARN] {result.warning}")
    else:
        print(f"[INFO] Session '{result.session}' {verb}")
    return 0


def run_driver(session: Optional[str], max_iterations: Optional[int] = None) -> int:
    store = StateStore() if session else None
    driver = FuzzDriver(session=session, store=store, max_iterations=max_iterations)
    return driver.run()


def start(controller: SessionController, detach: bool) -> int:
    if not controller.multiplexer.available():
        print("[WARN] tmux not found. Running without tmux.")
        return run_driver(None)

    session = controller.start()
    print(f"Creating tmux session: {session}")
    print("To detach safely: Press Ctrl+B, then D (not Ctrl+C)")
    if not detach:
        controller.attach(session)
    return 0


def dispatch(args: argparse.Namespace, controller: Optional[SessionController] = None) -> int:
    if args.command == "run":
        return run_driver(args.run_session, args.max_iterations)

    controller = controller or SessionController()

    if args.command == "start":
        return start(controller, args.detach)

    if args.command == "list":
        render_sessions(controller.list_sessions())
        return 0

    if not args.session:
        print(f"[ERROR] Usage: zzharness {args.command} <session_name>")
        return 1

    if args.command == "attach":
        print(f"Attaching to session '{args.session}'...")
        print("To detach safely: Press Ctrl+B, then D (not Ctrl+C)")
        controller.attach(args.session)
        return 0
    if args.command == "pause":
        return _report(controller.pause(args.session), "paused")
    if args.command == "continue":
        return _report(controller.resume(args.session), "resumed")

    result = controller.stop(args.session)
    _report(result, "stopped")
    print(f"[INFO] You can kill the tmux session with: tmux kill-session -t {args.session}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    level = logging.DEBUG if args.debug else logging.INFO
    setup_logging("driver" if args.command == "run" else "cli", level, console=False)

    try:
        return dispatch(args)
    except HarnessError as exc:
        logger.error("command_failed", command=args.command, error=exc.message, details=exc.details)
        print(f"[ERROR] {exc.message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
