"""Session record, violation records and session phases."""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import config

logger = logging.getLogger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class ViolationKind(Enum):
    """Classified anomaly types (values are the persisted identifiers)."""
    TAB_SWITCH = config.VIOLATION_TAB_SWITCH
    FOCUS_LOST = config.VIOLATION_FOCUS_LOST
    SCREENSHOT_ATTEMPT = config.VIOLATION_SCREENSHOT
    INSPECTOR_ATTEMPT = config.VIOLATION_INSPECTOR
    SAVE_OR_PRINT_ATTEMPT = config.VIOLATION_SAVE_OR_PRINT
    FORWARD_SEEK_ATTEMPT = config.VIOLATION_FORWARD_SEEK
    WINDOW_RESIZE = config.VIOLATION_WINDOW_RESIZE

    @property
    def label(self) -> str:
        """Human-readable label for toasts and feeds."""
        return config.VIOLATION_LABELS.get(self.value, self.value)


class SessionPhase(Enum):
    """Observable phase of a learner session."""
    NORMAL = "normal"
    MOMENTARY_BLACKOUT = "momentary_blackout"
    RECALIBRATING = "recalibrating"
    LOCKED_OUT = "locked_out"


@dataclass(frozen=True)
class Violation:
    """
    A classified anomalous signal.

    The deduction is fixed when the violation is created; changing the
    configured penalty later never rewrites history.
    """
    kind: ViolationKind
    timestamp: float
    deduction: int
    reason: str = ""

    def __post_init__(self):
        if self.deduction <= 0:
            raise ValueError(f"Violation deduction must be positive, got {self.deduction}")
        if not self.reason:
            # Frozen dataclass: assign through object.__setattr__
            object.__setattr__(self, "reason", self.kind.label)

    def to_dict(self) -> Dict[str, Any]:
        """Serialise for persistence and display."""
        return {
            "type": self.kind.value,
            "reason": self.reason,
            "timestamp": self.timestamp,
            "deduction": self.deduction,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Violation":
        """
        Rebuild a violation from its stored form.

        Raises:
            ValueError: If the type is unknown or the deduction is invalid.
            KeyError: If a required field is missing.
        """
        return cls(
            kind=ViolationKind(data["type"]),
            timestamp=float(data["timestamp"]),
            deduction=int(data["deduction"]),
            reason=str(data.get("reason", "")),
        )


@dataclass
class Session:
    """
    One learner's integrity record.

    Only TrustScoreLedger mutates trust_score and violation_log. The
    reset_epoch counter goes up on every administrative reset so a stale
    in-memory copy can never overwrite an unlock.
    """
    session_id: str
    trust_score: int = config.INITIAL_TRUST_SCORE
    violation_log: List[Violation] = field(default_factory=list)
    display_name: str = ""
    watch_seconds: float = 0.0
    reset_epoch: int = 0

    def __post_init__(self):
        if not self.display_name:
            self.display_name = self.session_id

    @property
    def is_below_threshold(self) -> bool:
        """True when the score is under the lockout threshold."""
        return self.trust_score < config.LOCKOUT_THRESHOLD

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to a JSON-compatible dict."""
        return {
            "session_id": self.session_id,
            "display_name": self.display_name,
            "trust_score": self.trust_score,
            "violation_log": [v.to_dict() for v in self.violation_log],
            "watch_seconds": self.watch_seconds,
            "reset_epoch": self.reset_epoch,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        """
        Rebuild a session from its stored form.

        Scores outside [0, 100] are clamped with a warning.
        """
        score = int(data.get("trust_score", config.INITIAL_TRUST_SCORE))
        clamped = max(0, min(config.INITIAL_TRUST_SCORE, score))
        if clamped != score:
            logger.warning(f"Stored trust score {score} out of range for {data.get('session_id')}, clamped to {clamped}")

        return cls(
            session_id=str(data["session_id"]),
            trust_score=clamped,
            violation_log=[Violation.from_dict(v) for v in data.get("violation_log", [])],
            display_name=str(data.get("display_name", "")),
            watch_seconds=float(data.get("watch_seconds", 0.0)),
            reset_epoch=int(data.get("reset_epoch", 0)),
        )


def generate_session_id(now: Optional[float] = None) -> str:
    """
    Generate a short opaque session id (base-36 millisecond timestamp).

    Args:
        now: Optional epoch seconds. If None, uses the current time.
    """
    value = int((now if now is not None else time.time()) * 1000)
    if value <= 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))
