"""
Violation classifier.

Maps a raw learner signal to a Violation (or decides none applies).
Focus-type violations are debounced on the session phase: while the
learner is already blacked out or recalibrating, a repeated FocusLost is
the same sustained anomaly and must not be charged twice. Key presses are
classified independently every time.
"""

import logging
import time
from typing import Callable, Dict, Optional

import config
from signals.events import (
    FocusLost,
    KeyCombo,
    KeyComboId,
    REASON_VISIBILITY_HIDDEN,
    Signal,
    WindowResized,
)
from tracking.session import SessionPhase, Violation, ViolationKind

logger = logging.getLogger(__name__)

# Key combos grouped by the violation they produce
KEY_COMBO_KINDS = {
    KeyComboId.PRINT_SCREEN: ViolationKind.SCREENSHOT_ATTEMPT,
    KeyComboId.F12: ViolationKind.INSPECTOR_ATTEMPT,
    KeyComboId.CTRL_SHIFT_I: ViolationKind.INSPECTOR_ATTEMPT,
    KeyComboId.CTRL_SHIFT_J: ViolationKind.INSPECTOR_ATTEMPT,
    KeyComboId.CTRL_U: ViolationKind.INSPECTOR_ATTEMPT,
    KeyComboId.CTRL_S: ViolationKind.SAVE_OR_PRINT_ATTEMPT,
    KeyComboId.CTRL_P: ViolationKind.SAVE_OR_PRINT_ATTEMPT,
}

# Phases in which a focus violation is already being handled
_FOCUS_DEBOUNCE_PHASES = (SessionPhase.RECALIBRATING, SessionPhase.MOMENTARY_BLACKOUT)


class ViolationClassifier:
    """
    Turns signals into violations using a configurable penalty table.

    Forward seeks are not visible here as signals (the playback guard
    decides whether a seek was rejected); the engine asks for a
    FORWARD_SEEK_ATTEMPT explicitly through forward_seek_violation().
    """

    def __init__(
        self,
        penalties: Optional[Dict[str, int]] = None,
        penalize_window_resize: Optional[bool] = None,
        penalize_forward_seek: Optional[bool] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            penalties: Deduction per violation kind value. Missing kinds fall
                       back to config.VIOLATION_PENALTIES.
            penalize_window_resize: Score WindowResized signals. Defaults to
                                    config.PENALIZE_WINDOW_RESIZE.
            penalize_forward_seek: Score rejected seeks. Defaults to
                                   config.PENALIZE_FORWARD_SEEK.
            clock: Source of violation timestamps.
        """
        self.penalties: Dict[str, int] = dict(config.VIOLATION_PENALTIES)
        if penalties:
            self.penalties.update(penalties)
        for kind_value, deduction in self.penalties.items():
            if deduction <= 0:
                raise ValueError(f"Penalty for {kind_value} must be positive, got {deduction}")

        self.penalize_window_resize = (
            config.PENALIZE_WINDOW_RESIZE if penalize_window_resize is None else penalize_window_resize
        )
        self.penalize_forward_seek = (
            config.PENALIZE_FORWARD_SEEK if penalize_forward_seek is None else penalize_forward_seek
        )
        self._clock = clock

    def classify(self, signal: Signal, phase: SessionPhase) -> Optional[Violation]:
        """
        Classify a signal in the context of the current phase.

        Args:
            signal: Incoming learner signal.
            phase: Current session phase.

        Returns:
            A Violation, or None when the signal is not punishable (or is
            suppressed by the phase debounce).
        """
        if phase == SessionPhase.LOCKED_OUT:
            return None

        if isinstance(signal, FocusLost):
            if phase in _FOCUS_DEBOUNCE_PHASES:
                logger.debug(f"FocusLost ({signal.reason}) suppressed during {phase.value}")
                return None
            if signal.reason == REASON_VISIBILITY_HIDDEN:
                return self._make(ViolationKind.TAB_SWITCH)
            return self._make(ViolationKind.FOCUS_LOST)

        if isinstance(signal, KeyCombo):
            kind = KEY_COMBO_KINDS.get(signal.combo)
            if kind is None:
                logger.warning(f"Unmapped key combo: {signal.combo}")
                return None
            return self._make(kind)

        if isinstance(signal, WindowResized):
            if self.penalize_window_resize and phase == SessionPhase.NORMAL:
                return self._make(ViolationKind.WINDOW_RESIZE)
            return None

        # FocusReturned, playback signals and blocked actions are never punished
        return None

    def forward_seek_violation(self, phase: SessionPhase) -> Optional[Violation]:
        """
        Violation for a seek the playback guard rejected, if policy scores it.

        Args:
            phase: Current session phase.
        """
        if not self.penalize_forward_seek or phase == SessionPhase.LOCKED_OUT:
            return None
        return self._make(ViolationKind.FORWARD_SEEK_ATTEMPT)

    def penalty_for(self, kind: ViolationKind) -> int:
        """Configured deduction for a violation kind."""
        return self.penalties[kind.value]

    def _make(self, kind: ViolationKind) -> Violation:
        return Violation(
            kind=kind,
            timestamp=self._clock(),
            deduction=self.penalty_for(kind),
        )
