#!/usr/bin/env python3
"""
Session Integrity - command line entry point.

Enrols learner sessions, replays recorded signal streams through the
integrity engine, and gives instructors the roster view and unlock action.

Usage:
    python main.py enroll [SESSION_ID] --name "Maria Garcia"
    python main.py replay SESSION_ID signals.jsonl
    python main.py roster
    python main.py history SESSION_ID
    python main.py unlock SESSION_ID
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import config
from core.engine import SessionEngine
from core.errors import InvalidSessionError
from core.timers import ManualScheduler
from monitoring.roster import RosterMonitor
from signals.events import signal_from_dict
from storage.session_store import SessionStore
from tracking.analytics import (
    STATUS_LABELS,
    compute_statistics,
    format_watch_time,
    generate_summary_text,
)
from tracking.session import generate_session_id

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format=config.LOG_FORMAT
)
logger = logging.getLogger(__name__)

# Extra virtual time after the last recorded signal so pending timers fire
_REPLAY_DRAIN_SECONDS = 5.0


class ConsoleMediaController:
    """Media controller that prints the commands it receives."""

    def __init__(self):
        self.position = 0.0
        self.opacity = 1
        self.playing = True

    def pause(self) -> None:
        self.playing = False
        print("   ⏸ media paused")

    def play(self) -> None:
        self.playing = True
        print("   ▶ media playing")

    def set_current_time(self, seconds: float) -> None:
        self.position = seconds
        print(f"   ⏮ position forced to {seconds:.2f}s")

    def set_opacity(self, opacity: int) -> None:
        self.opacity = opacity
        print(f"   opacity {opacity}")

    def detach(self) -> None:
        print("   media detached")


class ConsoleOverlay:
    """Overlay renderer that prints the commands it receives."""

    def show_blackout(self, persistent: bool) -> None:
        if persistent:
            print("   ⚠ FOCUS RECALIBRATING... RETURN TO SESSION")
        else:
            print("   ■ PROTECTED CONTENT")

    def hide_blackout(self) -> None:
        print("   blackout cleared")

    def show_countdown(self, seconds_remaining: int) -> None:
        print(f"   PENALTY LOCKOUT: {seconds_remaining}s")

    def show_toast(self, message: str) -> None:
        print(f"   🔒 {message}")

    def show_lockout_notice(self) -> None:
        print("   ❌ TRUST SCORE CRITICAL - access revoked, contact your instructor to unlock")


def _open_store(data_file: Optional[str]) -> SessionStore:
    return SessionStore(Path(data_file) if data_file else None)


def cmd_enroll(store: SessionStore, args: argparse.Namespace) -> int:
    session_id = args.session_id or generate_session_id()
    session = store.create(session_id, display_name=args.name or "")
    print(f"✓ Session {session.session_id} ({session.display_name}) score {session.trust_score}%")
    return 0


def cmd_replay(store: SessionStore, args: argparse.Namespace) -> int:
    """
    Replay a JSON-lines signal recording on a virtual clock.

    Each line is a signal dict plus "at" (seconds since the start of the
    recording), e.g. {"at": 12.5, "type": "focus_lost", "reason": "window_blur"}.
    """
    path = Path(args.signals_file)
    if not path.exists():
        print(f"❌ Signal file not found: {path}")
        return 1

    scheduler = ManualScheduler()
    engine = SessionEngine(
        args.session_id,
        store,
        media=ConsoleMediaController(),
        renderer=ConsoleOverlay(),
        scheduler=scheduler,
        clock=scheduler.clock,
    )
    engine.on_phase_change = lambda old, new: print(f"   phase {old.value} -> {new.value}")

    status = engine.start()
    print(f"✓ Replaying {path.name} for {args.session_id} (score {status['trust_score']}%)")

    with open(path, 'r') as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
                signal = signal_from_dict(data)
                at = float(data.get("at", scheduler.now))
            except (json.JSONDecodeError, ValueError, KeyError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping line {line_no}: {e}")
                continue

            scheduler.advance_to(at)
            print(f"[{scheduler.now:7.2f}s] {data['type']}")
            engine.dispatch(signal)

    scheduler.advance(_REPLAY_DRAIN_SECONDS)
    engine.stop()

    status = engine.get_status()
    print(
        f"\nFinal: score {status['trust_score']}%, phase {status['phase']}, "
        f"{status['violation_count']} violations, watched {format_watch_time(status['watch_seconds'])}"
    )
    return 0


def cmd_roster(store: SessionStore, args: argparse.Namespace) -> int:
    view = RosterMonitor(store).snapshot()
    kpis = view["kpis"]
    print(f"{kpis['total_sessions']} sessions, {kpis['total_violations']} violations, "
          f"{kpis['critical_count']} critical\n")
    print(f"{'ID':<14} {'Name':<20} {'Score':>5}  {'Status':<17} {'Viol':>4}  Watched")
    for row in view["rows"]:
        print(
            f"{row['session_id']:<14} {row['display_name'][:20]:<20} {row['trust_score']:>4}%  "
            f"{STATUS_LABELS[row['status']]:<17} {row['violation_count']:>4}  "
            f"{format_watch_time(row['watch_seconds'])}"
        )
    return 0


def cmd_history(store: SessionStore, args: argparse.Namespace) -> int:
    monitor = RosterMonitor(store)
    print(generate_summary_text(compute_statistics(store.load(args.session_id))))
    print()
    for entry in monitor.violation_history(args.session_id):
        print(f"  ⚠ {entry['reason']:<24} -{entry['deduction']:<3} at {entry['timestamp']:.2f}")
    return 0


def cmd_unlock(store: SessionStore, args: argparse.Namespace) -> int:
    RosterMonitor(store).unlock(args.session_id)
    print(f"✓ Session {args.session_id} unlocked (score reset to {config.INITIAL_TRUST_SCORE}%)")
    return 0


def main() -> None:
    """Parse arguments and run the selected command."""
    parser = argparse.ArgumentParser(
        description="Session Integrity - proctoring policy engine for lesson playback",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py enroll maria --name "Maria Garcia"
  python main.py replay maria recording.jsonl
  python main.py roster
  python main.py unlock maria
        """
    )
    parser.add_argument(
        "--data-file",
        help=f"Session store file (default: {config.SESSIONS_FILE})",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    enroll = subparsers.add_parser("enroll", help="Register a learner session")
    enroll.add_argument("session_id", nargs="?", help="Session id (generated if omitted)")
    enroll.add_argument("--name", help="Learner display name")
    enroll.set_defaults(handler=cmd_enroll)

    replay = subparsers.add_parser("replay", help="Replay a JSON-lines signal recording")
    replay.add_argument("session_id")
    replay.add_argument("signals_file")
    replay.set_defaults(handler=cmd_replay)

    roster = subparsers.add_parser("roster", help="Show the class roster")
    roster.set_defaults(handler=cmd_roster)

    history = subparsers.add_parser("history", help="Show a session's violation history")
    history.add_argument("session_id")
    history.set_defaults(handler=cmd_history)

    unlock = subparsers.add_parser("unlock", help="Administrative unlock (score back to 100)")
    unlock.add_argument("session_id")
    unlock.set_defaults(handler=cmd_unlock)

    args = parser.parse_args()
    store = _open_store(args.data_file)

    try:
        sys.exit(args.handler(store, args))
    except InvalidSessionError as e:
        print(f"❌ {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n\nGoodbye!")
        sys.exit(0)


if __name__ == "__main__":
    main()
