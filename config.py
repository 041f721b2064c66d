"""Configuration settings for the session integrity engine."""

import logging
import os
import sys
from pathlib import Path
from dotenv import load_dotenv


def _env_int(name: str, default: int) -> int:
    """
    Read an integer override from the environment.

    Args:
        name: Environment variable name.
        default: Value used when unset or unparsable.

    Returns:
        The parsed integer, or default.
    """
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger(__name__).warning(f"{name}={raw!r} is not an integer, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    """Read a float override from the environment (falls back to default)."""
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logging.getLogger(__name__).warning(f"{name}={raw!r} is not a number, using {default}")
        return default


def _env_flag(name: str, default: bool = False) -> bool:
    """Read a boolean flag ("true", "1", "yes") from the environment."""
    raw = os.getenv(name, "")
    if not raw:
        return default
    return raw.lower() in ("true", "1", "yes")


def get_user_data_dir() -> Path:
    """
    Get the directory for writable session data.

    INTEGRITY_DATA_DIR overrides the location. Otherwise development
    checkouts keep data next to this file and installed copies use a
    per-user folder.

    Returns:
        Path to the user data directory.
    """
    override = os.getenv("INTEGRITY_DATA_DIR", "")
    if override:
        return Path(override).expanduser()

    source_data = Path(__file__).parent / "data"
    if os.access(Path(__file__).parent, os.W_OK):
        return source_data

    if sys.platform == 'win32':
        appdata = os.environ.get('APPDATA')
        if appdata:
            return Path(appdata) / "SessionIntegrity"
        return Path.home() / "AppData" / "Roaming" / "SessionIntegrity"
    if sys.platform == 'darwin':
        return Path.home() / "Library" / "Application Support" / "SessionIntegrity"
    return Path.home() / ".local" / "share" / "SessionIntegrity"


# Load environment variables from .env next to this file
# (works regardless of the current working directory)
_env_path = Path(__file__).parent / ".env"
load_dotenv(_env_path)

# User data directory (sessions file lives here)
USER_DATA_DIR = get_user_data_dir()
SESSIONS_FILE = USER_DATA_DIR / "sessions.json"

# Trust score
INITIAL_TRUST_SCORE = 100
LOCKOUT_THRESHOLD = _env_int("LOCKOUT_THRESHOLD", 50)  # Score strictly below this locks the session
MONITOR_THRESHOLD = _env_int("MONITOR_THRESHOLD", 80)  # Roster band between "good" and "critical"

# Violation kinds (values are the persisted identifiers)
VIOLATION_TAB_SWITCH = "tab_switch"
VIOLATION_FOCUS_LOST = "focus_lost"
VIOLATION_SCREENSHOT = "screenshot_attempt"
VIOLATION_INSPECTOR = "inspector_attempt"
VIOLATION_SAVE_OR_PRINT = "save_or_print_attempt"
VIOLATION_FORWARD_SEEK = "forward_seek_attempt"
VIOLATION_WINDOW_RESIZE = "window_resize"

# Deduction applied per violation kind
VIOLATION_PENALTIES = {
    VIOLATION_TAB_SWITCH: _env_int("PENALTY_TAB_SWITCH", 5),
    VIOLATION_FOCUS_LOST: _env_int("PENALTY_FOCUS_LOST", 5),
    VIOLATION_SCREENSHOT: _env_int("PENALTY_SCREENSHOT", 20),  # High penalty
    VIOLATION_INSPECTOR: _env_int("PENALTY_INSPECTOR", 10),
    VIOLATION_SAVE_OR_PRINT: _env_int("PENALTY_SAVE_OR_PRINT", 10),
    VIOLATION_FORWARD_SEEK: _env_int("PENALTY_FORWARD_SEEK", 5),
    VIOLATION_WINDOW_RESIZE: _env_int("PENALTY_WINDOW_RESIZE", 5),
}

# Labels shown in toasts and the violation feed
VIOLATION_LABELS = {
    VIOLATION_TAB_SWITCH: "Tab Switch / Minimized",
    VIOLATION_FOCUS_LOST: "App Switch / Focus Lost",
    VIOLATION_SCREENSHOT: "Screenshot Attempt",
    VIOLATION_INSPECTOR: "Inspector Attempt",
    VIOLATION_SAVE_OR_PRINT: "Save/Print Attempt",
    VIOLATION_FORWARD_SEEK: "Forward Seek Attempt",
    VIOLATION_WINDOW_RESIZE: "Window Resized",
}

# Policy switches: both default to cosmetic-only handling
PENALIZE_FORWARD_SEEK = _env_flag("PENALIZE_FORWARD_SEEK")
PENALIZE_WINDOW_RESIZE = _env_flag("PENALIZE_WINDOW_RESIZE")

# Phase timings (seconds)
RECALIBRATION_SECONDS = 3  # Countdown after focus returns, cannot be skipped
MOMENTARY_BLACKOUT_SECONDS = 1.5  # Auto-revert delay for resize / screenshot

# Playback guard
SEEK_TOLERANCE_SECONDS = 0.5  # Allows decoder jitter without flagging a forward seek
WATCH_DELTA_MAX_SECONDS = _env_float("WATCH_DELTA_MAX_SECONDS", 2.0)  # Larger jumps are not counted as watched
FORWARD_SEEK_MESSAGE = "Forwarding Prohibited by Proctor"

# Roster / monitoring
RECENT_VIOLATIONS_LIMIT = 5  # Entries shown in the learner's violation feed
ROSTER_POLL_INTERVAL = _env_float("ROSTER_POLL_INTERVAL", 2.0)

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")  # Can override in .env: DEBUG, INFO, WARNING, ERROR
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
